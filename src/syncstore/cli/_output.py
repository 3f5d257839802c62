"""Output formatting helpers for the CLI."""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from typing import Any


def format_ts(ms: int | None) -> str:
    """Render an epoch-milliseconds timestamp as UTC ISO-8601."""
    if not ms:
        return "-"
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc).isoformat(timespec="milliseconds")


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def print_table(headers: list[str], rows: list[list[Any]], *, json_mode: bool = False) -> None:
    """Print rows as aligned columns, or as a JSON array of objects."""
    if json_mode:
        print_json([dict(zip(headers, row)) for row in rows])
        return
    if not rows:
        print("(none)")
        return

    cells = [[str(v) for v in row] for row in rows]
    widths = [max(len(h), *(len(r[i]) for r in cells)) for i, h in enumerate(headers)]
    print("  ".join(h.ljust(w) for h, w in zip(headers, widths)).rstrip())
    print("  ".join("-" * w for w in widths))
    for row in cells:
        print("  ".join(v.ljust(w) for v, w in zip(row, widths)).rstrip())


def print_object(data: dict[str, Any], *, json_mode: bool = False) -> None:
    """Print a flat mapping as JSON or ``key: value`` lines."""
    if json_mode:
        print_json(data)
        return
    width = max((len(k) for k in data), default=0)
    for k, v in data.items():
        print(f"{k.ljust(width)}  {v}")


def print_error(msg: str) -> None:
    """Print an error message to stderr."""
    print(f"Error: {msg}", file=sys.stderr)
