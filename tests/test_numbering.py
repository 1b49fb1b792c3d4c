"""
Order number format and uniqueness.
"""

import pytest

from order_tracker.services.orders.numbering import (
    ORDER_NUMBER_PATTERN,
    generate_order_number,
    to_base36,
)


@pytest.mark.parametrize("value, expected", [
    (0, "0"),
    (35, "Z"),
    (36, "10"),
    (1_700_000_000_000, "LOYW3V28"),
])
def test_to_base36(value, expected):
    assert to_base36(value) == expected


def test_to_base36_rejects_negative():
    with pytest.raises(ValueError):
        to_base36(-1)


def test_format():
    number = generate_order_number("ORD", timestamp_ms=36)
    assert ORDER_NUMBER_PATTERN.match(number)
    assert number.startswith("ORD-10-")


def test_prefix_is_upper_cased():
    assert generate_order_number("ord").startswith("ORD-")


def test_same_millisecond_numbers_stay_unique():
    numbers = {generate_order_number(timestamp_ms=1_700_000_000_000) for _ in range(10_000)}
    assert len(numbers) == 10_000
