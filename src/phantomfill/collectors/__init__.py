"""Importers for externally captured orderbook data."""
