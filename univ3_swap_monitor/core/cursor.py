from univ3_swap_monitor.core.errors import InvariantViolation


class FilterCursor:
    """Highest block height already scanned (inclusive). Only moves forward."""

    def __init__(self, height: int):
        # -1 means nothing scanned yet, so the first range starts at genesis
        if height < -1:
            raise InvariantViolation(f"cursor height must be >= -1, got {height}")
        self._height = int(height)

    def current(self) -> int:
        return self._height

    def advance_to(self, height: int) -> None:
        if height < self._height:
            raise InvariantViolation(
                f"cursor cannot move backwards ({self._height} -> {height})"
            )
        self._height = int(height)

    def __repr__(self) -> str:
        return f"FilterCursor({self._height})"
