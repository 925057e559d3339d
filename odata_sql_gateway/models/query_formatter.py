"""Row formatting for JSON responses."""

import base64
import math
import uuid
from datetime import datetime, date, time
from decimal import Decimal
from typing import Any, Dict, List, Sequence


class RowFormatter:
    """Converts driver rows into JSON-safe dictionaries keyed by column name."""

    def format_rows(self, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> List[Dict[str, Any]]:
        return [self.format_row(columns, row) for row in rows]

    def format_row(self, columns: Sequence[str], row: Sequence[Any]) -> Dict[str, Any]:
        return {column: self.format_value(value) for column, value in zip(columns, row)}

    def format_value(self, value: Any) -> Any:
        """Format an individual cell value."""
        if value is None:
            return None
        elif isinstance(value, bool):
            return value
        elif isinstance(value, (datetime, date, time)):
            return value.isoformat()
        elif isinstance(value, Decimal):
            return self._format_decimal(value)
        elif isinstance(value, float):
            return value if math.isfinite(value) else str(value)
        elif isinstance(value, uuid.UUID):
            return str(value).upper()
        elif isinstance(value, (bytes, bytearray, memoryview)):
            return base64.b64encode(bytes(value)).decode("ascii")
        elif isinstance(value, (int, str)):
            return value
        else:
            return str(value)

    @staticmethod
    def _format_decimal(value: Decimal) -> Any:
        # Keep precision when a float cannot represent the value exactly
        if not value.is_finite():
            return str(value)
        if value == value.to_integral_value() and abs(value) < 2 ** 53:
            return int(value)
        as_float = float(value)
        if Decimal(repr(as_float)) == value:
            return as_float
        return str(value)
