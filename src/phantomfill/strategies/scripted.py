"""User strategies written as small sandboxed Python scripts.

A script defines ``on_tick(snap)`` and ``on_reset()``, and optionally
``on_market_open(snap)``. ``on_tick`` returns a list of actions built with
the ``bid(side, price, size)`` and ``cancel(side)`` helpers. Module-level
variables hold per-window state; functions update them with ``global``.

Example script::

    fired = False

    def on_tick(snap):
        global fired
        if fired or snap["offset_ms"] < 60_000:
            return []
        fired = True
        side = "yes" if snap["yes_bid"] >= snap["no_bid"] else "no"
        return [bid(side, BID_PRICE, SIZE)]

    def on_reset():
        global fired
        fired = False

Scripts run with a restricted set of builtins. Imports, names starting with a
double underscore, attributes starting with an underscore, frame and generator
introspection attributes (``gi_frame``, ``f_back``, ``tb_frame`` and the
like), ``str.format``, and rebinding the constants ``SIZE``, ``SHARES`` and
``BID_PRICE`` are rejected when the script is loaded. Snapshots are passed as
read-only mappings with these keys:

    yes_bid, yes_ask, yes_bid_size, yes_ask_size, yes_total_bid_depth,
    yes_total_ask_depth, yes_depth (same for no_*), offset_ms, timestamp_ms,
    oracle_price, reference_price, market_id

Missing prices and sizes appear as 0.0. ``yes_depth_at(snap, price)`` and
``no_depth_at(snap, price)`` look up cumulative bid depth.
"""

import ast
import logging
import math
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union

from phantomfill.core.exceptions import StrategyFault
from phantomfill.core.models import Side
from phantomfill.simulation.events import BookSnapshot, Cancel, PlaceBid, PriceLevel, SideBook
from phantomfill.strategies.base import Strategy, StrategyParams

logger = logging.getLogger(__name__)

PROTECTED_NAMES = frozenset({"SIZE", "SHARES", "BID_PRICE"})

# Frame, generator, coroutine, traceback and code objects lead back to the
# host's globals and builtins without touching a dunder name.
BLOCKED_ATTRIBUTE_PREFIXES = ("gi_", "cr_", "ag_", "f_", "tb_", "co_")
BLOCKED_ATTRIBUTES = frozenset({"mro", "func_globals", "format", "format_map"})
REQUIRED_CALLBACKS = ("on_tick", "on_reset")

_SAFE_BUILTINS = MappingProxyType(
    {
        "abs": abs,
        "all": all,
        "any": any,
        "bool": bool,
        "dict": dict,
        "enumerate": enumerate,
        "float": float,
        "int": int,
        "isinstance": isinstance,
        "len": len,
        "list": list,
        "max": max,
        "min": min,
        "range": range,
        "reversed": reversed,
        "round": round,
        "set": set,
        "sorted": sorted,
        "str": str,
        "sum": sum,
        "tuple": tuple,
        "zip": zip,
    }
)


def bid(side: str, price: float, size: float) -> Dict[str, Any]:
    return {"type": "bid", "side": side, "price": price, "size": size}


def cancel(side: str) -> Dict[str, Any]:
    return {"type": "cancel", "side": side}


def _depth_at(snap: Mapping[str, Any], key: str, price: float) -> float:
    levels = tuple(
        PriceLevel(float(level["price"]), float(level["size"])) for level in snap.get(key, ())
    )
    return SideBook(depth=levels).bid_depth_at(price)


def yes_depth_at(snap: Mapping[str, Any], price: float) -> float:
    return _depth_at(snap, "yes_depth", price)


def no_depth_at(snap: Mapping[str, Any], price: float) -> float:
    return _depth_at(snap, "no_depth", price)


def _side_fields(prefix: str, book: SideBook) -> Dict[str, Any]:
    return {
        f"{prefix}_bid": book.best_bid or 0.0,
        f"{prefix}_ask": book.best_ask or 0.0,
        f"{prefix}_bid_size": book.best_bid_size or 0.0,
        f"{prefix}_ask_size": book.best_ask_size or 0.0,
        f"{prefix}_total_bid_depth": book.total_bid_depth or 0.0,
        f"{prefix}_total_ask_depth": book.total_ask_depth,
        f"{prefix}_depth": tuple(
            MappingProxyType({"price": level.price, "size": level.cumulative_size})
            for level in book.depth
        ),
    }


def snapshot_to_mapping(snapshot: BookSnapshot) -> Mapping[str, Any]:
    """Read-only view of a snapshot for script code."""
    fields = {
        "market_id": snapshot.market_id,
        "offset_ms": snapshot.offset_ms,
        "timestamp_ms": int(snapshot.timestamp.timestamp() * 1000),
        "oracle_price": snapshot.oracle_price,
        "reference_price": snapshot.reference_price,
    }
    fields.update(_side_fields("yes", snapshot.yes))
    fields.update(_side_fields("no", snapshot.no))
    return MappingProxyType(fields)


def to_action(item: Any) -> Any:
    """Convert a script action dict into PlaceBid/Cancel.

    Items that cannot be converted are returned unchanged, so the replay
    engine's validation discards and counts them.
    """
    if not isinstance(item, Mapping):
        return item
    try:
        kind = item["type"]
        side = Side.parse(item["side"])
        if kind == "cancel":
            return Cancel(side)
        if kind == "bid":
            size = item["size"] if "size" in item else item["shares"]
            return PlaceBid(side, item["price"], size)
    except (KeyError, ValueError):
        pass
    return item


class _SandboxChecker(ast.NodeVisitor):
    """Rejects constructs scripts may not use."""

    def __init__(self):
        self.problems: List[str] = []

    def _reject(self, node: ast.AST, message: str) -> None:
        self.problems.append(f"line {getattr(node, 'lineno', '?')}: {message}")

    def visit_Import(self, node: ast.Import) -> None:
        self._reject(node, "imports are not allowed")

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        self._reject(node, "imports are not allowed")

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if (
            node.attr.startswith("_")
            or node.attr.startswith(BLOCKED_ATTRIBUTE_PREFIXES)
            or node.attr in BLOCKED_ATTRIBUTES
        ):
            self._reject(node, f"access to attribute {node.attr!r} is not allowed")
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("__"):
            self._reject(node, f"name {node.id!r} is not allowed")
        if node.id in PROTECTED_NAMES and not isinstance(node.ctx, ast.Load):
            self._reject(node, f"constant {node.id} cannot be reassigned")

    def visit_Global(self, node: ast.Global) -> None:
        for name in node.names:
            if name in PROTECTED_NAMES:
                self._reject(node, f"constant {name} cannot be reassigned")

    visit_Nonlocal = visit_Global

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        if node.name in PROTECTED_NAMES:
            self._reject(node, f"constant {node.name} cannot be reassigned")
        self.generic_visit(node)

    def visit_arg(self, node: ast.arg) -> None:
        if node.arg in PROTECTED_NAMES:
            self._reject(node, f"constant {node.arg} cannot be reassigned")


def check_script(source: str, filename: str = "<script>") -> ast.Module:
    """Parse and vet script source.

    Raises:
        SyntaxError: If the source does not parse.
        ValueError: If it uses a disallowed construct.
    """
    tree = ast.parse(source, filename=filename)
    checker = _SandboxChecker()
    checker.visit(tree)
    if checker.problems:
        raise ValueError("; ".join(checker.problems))
    return tree


class ScriptedStrategy(Strategy):
    """Strategy whose callbacks are defined by a sandboxed script.

    The script's top level runs once at construction; constants are bound
    before that and stay fixed for the life of the instance.
    """

    def __init__(
        self,
        name: str,
        source: str,
        params: Optional[StrategyParams] = None,
        description: str = "",
    ):
        super().__init__(params)
        self.name = name
        self.description = description or f"scripted strategy {name}"

        try:
            tree = check_script(source, filename=name)
            code = compile(tree, filename=name, mode="exec")
        except (SyntaxError, ValueError) as e:
            raise StrategyFault(name, "load", e) from e

        self._globals: Dict[str, Any] = {
            "__builtins__": _SAFE_BUILTINS,
            "SIZE": self.params.size,
            "SHARES": self.params.size,
            "BID_PRICE": self.params.bid_price,
            "bid": bid,
            "cancel": cancel,
            "yes_depth_at": yes_depth_at,
            "no_depth_at": no_depth_at,
            "math": math,
        }
        try:
            exec(code, self._globals)
        except Exception as e:
            raise StrategyFault(name, "load", e) from e

        missing = [cb for cb in REQUIRED_CALLBACKS if not callable(self._globals.get(cb))]
        if missing:
            raise StrategyFault(
                name, "load", ValueError(f"script must define {', '.join(missing)}")
            )

    @classmethod
    def from_file(
        cls,
        path: Union[str, Path],
        params: Optional[StrategyParams] = None,
    ) -> "ScriptedStrategy":
        """Load a script; the strategy is named after the file stem."""
        path = Path(path)
        try:
            source = path.read_text()
        except OSError as e:
            raise StrategyFault(path.stem, "load", e) from e
        return cls(path.stem, source, params, description=str(path))

    def _call(self, callback: str, *args: Any) -> Any:
        try:
            return self._globals[callback](*args)
        except Exception as e:
            raise StrategyFault(self.name, callback, e) from e

    def on_market_open(self, snapshot: BookSnapshot) -> None:
        if callable(self._globals.get("on_market_open")):
            self._call("on_market_open", snapshot_to_mapping(snapshot))

    def on_tick(self, snapshot: BookSnapshot) -> List[Any]:
        returned = self._call("on_tick", snapshot_to_mapping(snapshot))
        if returned is None:
            return []
        if not isinstance(returned, (list, tuple)):
            logger.warning(
                f"Script {self.name} on_tick returned {type(returned).__name__}, expected a list"
            )
            return [returned]
        return [to_action(item) for item in returned]

    def on_reset(self) -> None:
        self._call("on_reset")
