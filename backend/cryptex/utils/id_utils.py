"""Row id parsing for ids that arrive as JSON numbers, strings or query values."""

import re
from typing import Any, Optional

# Largest value an SQLite / BIGINT primary key can hold
MAX_ROW_ID = 2 ** 63 - 1

_ROW_ID = re.compile(r"\d+", re.ASCII)


def parse_row_id(value: Any) -> Optional[int]:
    """Parse ``value`` as a positive row id, or None.

    Only ASCII digits are accepted ("12", 12, " 12 "). Booleans, signs,
    decimals, Unicode digits ("²") and ids past MAX_ROW_ID all give None, so
    a lookup with the result can never fail at the database driver.
    """
    if value is None or isinstance(value, bool):
        return None
    raw = str(value).strip()
    if not _ROW_ID.fullmatch(raw):
        return None
    row_id = int(raw)
    if row_id < 1 or row_id > MAX_ROW_ID:
        return None
    return row_id
