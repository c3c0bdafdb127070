"""Captured book_ticks import (CSV / Parquet exports)."""

from phantomfill.collectors.capture.importer import (
    ImportStats,
    import_capture,
    load_capture_windows,
    read_capture_file,
)

__all__ = [
    "ImportStats",
    "import_capture",
    "load_capture_windows",
    "read_capture_file",
]
