"""
MiniDoc Result Renderer
=======================
Formats documents and aggregation records as aligned ASCII tables.

Features:
  - Columns are the union of fields over the sampled rows, in first-seen
    order (documents need not share a shape)
  - Absent fields render blank, null renders as "null"
  - Row count + elapsed time footer
  - Message, heading and error rendering
  - Modes: table, vertical, raw
  - Configurable: headers, timer, display limit
"""

import sys
import time
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, TextIO

MODES = ("table", "vertical", "raw")

_ABSENT = object()


class Renderer:
    """
    Streaming result renderer with configurable display modes.
    """

    def __init__(self, output: TextIO = None):
        self.output = output or sys.stdout
        self.mode: str = "table"        # table, vertical, raw
        self.show_headers: bool = True
        self.show_timer: bool = True
        self.display_limit: Optional[int] = None  # None = no limit
        self.max_col_width: int = 50

    # ─── Public API ─────────────────────────────────────────────────

    def render_rows(self, rows: Iterable, column_names: Optional[List[str]] = None) -> int:
        """
        Render documents or records. Returns number of rows rendered.

        Strategy for table mode:
          - Buffer first N rows to determine columns and widths
          - Then stream remaining rows using those widths
        """
        start = time.perf_counter()
        rows = iter(rows)

        if self.mode == "raw":
            count = self._render_raw(rows, column_names)
        elif self.mode == "vertical":
            count = self._render_vertical(rows, column_names)
        else:
            count = self._render_table(rows, column_names)

        elapsed = time.perf_counter() - start

        if self.show_timer:
            self._print(f"{count} document(s) ({elapsed:.3f}s)")
        else:
            self._print(f"{count} document(s)")

        return count

    def render_heading(self, text: str):
        self._print(f"\n── {text} ──")

    def render_message(self, message: str):
        """Render a non-query result message (update, delete, index)."""
        if message:
            self._print(message)

    def render_error(self, error: Exception):
        """Render an error with classification prefix."""
        error_type = type(error).__name__
        prefix = self._classify_error(error_type)
        self._print(f"{prefix}: {error}")

    # ─── Table Mode (streaming with width sampling) ─────────────────

    def _render_table(self, rows, column_names: Optional[List[str]]) -> int:
        """
        Render rows in aligned table format.
        Buffers first batch to determine columns and widths, then streams.
        """
        buffer = []
        sample_size = 100

        for row in rows:
            if self.display_limit is not None and len(buffer) >= self.display_limit:
                break
            buffer.append(self._extract_values(row))
            if len(buffer) >= sample_size:
                break

        headers = column_names or self._collect_headers(buffer)
        if not buffer or not headers:
            return len(buffer)

        widths = self._calculate_widths(headers, buffer)

        if self.show_headers:
            self._print_table_separator(widths, headers)
            self._print_table_row(widths, headers, {h: h for h in headers})
            self._print_table_separator(widths, headers)

        count = 0
        for vals in buffer:
            self._print_table_row(widths, headers, vals)
            count += 1

        for row in rows:
            if self.display_limit is not None and count >= self.display_limit:
                self._print(f"... (display limit {self.display_limit} reached)")
                break
            self._print_table_row(widths, headers, self._extract_values(row))
            count += 1

        if self.show_headers and count > 0:
            self._print_table_separator(widths, headers)

        return count

    @staticmethod
    def _collect_headers(rows: List[Dict[str, Any]]) -> List[str]:
        headers: Dict[str, None] = {}
        for vals in rows:
            for name in vals:
                headers.setdefault(name, None)
        return list(headers)

    def _calculate_widths(self, headers: List[str], rows: List[Dict]) -> Dict[str, int]:
        """Calculate column widths from headers and sample rows."""
        widths = {}
        for h in headers:
            widths[h] = min(len(h), self.max_col_width)

        for row in rows:
            for h in headers:
                val = self._format_value(row.get(h, _ABSENT))
                widths[h] = max(widths[h], min(len(val), self.max_col_width))

        return widths

    def _print_table_separator(self, widths: Dict[str, int], headers: List[str]):
        """Print +----+------+ separator line."""
        parts = ["+"]
        for h in headers:
            parts.append("-" * (widths[h] + 2) + "+")
        self._print("".join(parts))

    def _print_table_row(self, widths: Dict[str, int], headers: List[str], vals: Dict):
        """Print | col1 | col2 | row."""
        parts = ["|"]
        for h in headers:
            raw_val = vals.get(h, _ABSENT)
            val_str = self._format_value(raw_val)
            if len(val_str) > self.max_col_width:
                val_str = val_str[:self.max_col_width - 3] + "..."
            w = widths[h]
            # Right-align numbers, left-align everything else
            if isinstance(raw_val, (int, float)) and not isinstance(raw_val, bool):
                parts.append(f" {val_str:>{w}} |")
            else:
                parts.append(f" {val_str:<{w}} |")
        self._print("".join(parts))

    # ─── Vertical Mode ──────────────────────────────────────────────

    def _render_vertical(self, rows, column_names: Optional[List[str]]) -> int:
        """Render each row as key: value pairs."""
        count = 0
        for row in rows:
            if self.display_limit is not None and count >= self.display_limit:
                self._print(f"... (display limit {self.display_limit} reached)")
                break
            vals = self._extract_values(row)
            headers = column_names or list(vals.keys())

            count += 1
            self._print(f"*** Document {count} ***")
            max_key_len = max(len(h) for h in headers) if headers else 0
            for h in headers:
                val_str = self._format_value(vals.get(h, _ABSENT))
                self._print(f"  {h:>{max_key_len}}: {val_str}")

        return count

    # ─── Raw Mode ───────────────────────────────────────────────────

    def _render_raw(self, rows, column_names: Optional[List[str]]) -> int:
        """Render values separated by pipes, no formatting."""
        count = 0
        headers = column_names or []

        for row in rows:
            if self.display_limit is not None and count >= self.display_limit:
                break
            vals = self._extract_values(row)
            if count == 0:
                headers = headers or list(vals.keys())
                if self.show_headers:
                    self._print("|".join(headers))
            parts = [self._format_value(vals.get(h, _ABSENT)) for h in headers]
            self._print("|".join(parts))
            count += 1

        return count

    # ─── Helpers ────────────────────────────────────────────────────

    def _extract_values(self, row) -> Dict[str, Any]:
        """Extract values dict from an ExecutionRow, dict or dataclass."""
        if isinstance(row, dict):
            return row
        if hasattr(row, 'to_dict'):
            return row.to_dict()
        if hasattr(row, 'values') and isinstance(row.values, dict):
            return row.values
        return {"value": row}

    def _format_value(self, value) -> str:
        """Format a single value for display."""
        if value is _ABSENT:
            return ""
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, float):
            # Avoid unnecessary decimal places
            if value.is_integer():
                return str(int(value))
            return f"{value:.6g}"
        if isinstance(value, (date, datetime)):
            return value.isoformat()
        if isinstance(value, dict):
            inner = ", ".join(f"{k}: {self._format_value(v)}" for k, v in value.items())
            return "{" + inner + "}"
        if isinstance(value, (list, tuple)):
            return "[" + ", ".join(self._format_value(v) for v in value) + "]"
        return str(value)

    def _classify_error(self, error_type: str) -> str:
        """Map error class name to user-friendly prefix."""
        mapping = {
            "InvalidPredicateError": "QueryError",
            "InvalidQueryError": "QueryError",
            "InvalidUpdateError": "UpdateError",
            "ImmutableFieldError": "UpdateError",
            "InvalidDocumentError": "DocumentError",
            "DuplicateKeyError": "ConstraintError",
            "IndexConflictError": "IndexError",
            "IndexNotFoundError": "IndexError",
            "InvalidPipelineError": "AggregationError",
            "ExpressionError": "AggregationError",
            "LockTimeoutError": "ConcurrencyError",
            "LockUpgradeError": "ConcurrencyError",
            "SessionError": "SessionError",
            "JSONDecodeError": "DataError",
            "KeyboardInterrupt": "Interrupted",
        }
        return mapping.get(error_type, f"Error[{error_type}]")

    def _print(self, text: str):
        """Print a line to the output stream."""
        print(text, file=self.output)
