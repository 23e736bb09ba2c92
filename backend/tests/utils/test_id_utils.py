"""
Tests for backend/cryptex/utils/id_utils.py
"""

import pytest

from cryptex.utils.id_utils import MAX_ROW_ID, parse_row_id


@pytest.mark.parametrize("value,expected", [
    (12, 12),
    ("12", 12),
    (" 7 ", 7),
    (str(MAX_ROW_ID), MAX_ROW_ID),
])
def test_valid_ids(value, expected):
    assert parse_row_id(value) == expected


@pytest.mark.parametrize("value", [
    None,
    "",
    True,
    "abc",
    "-3",
    "+3",
    "0",
    "1.5",
    1.5,
    "1_000",
    "²",
    "٣",
    str(MAX_ROW_ID + 1),
    "99999999999999999999999",
])
def test_rejected_ids(value):
    assert parse_row_id(value) is None
