import pytest

from univ3_swap_monitor.core.cursor import FilterCursor
from univ3_swap_monitor.core.errors import InvariantViolation


def test_advance_forward():
    cursor = FilterCursor(10)
    cursor.advance_to(10)
    assert cursor.current() == 10
    cursor.advance_to(25)
    assert cursor.current() == 25


def test_advance_backwards_is_invariant_violation():
    cursor = FilterCursor(10)
    with pytest.raises(InvariantViolation):
        cursor.advance_to(9)
    assert cursor.current() == 10


def test_fresh_cursor_before_genesis():
    assert FilterCursor(-1).current() == -1
    with pytest.raises(InvariantViolation):
        FilterCursor(-2)
