"""Display period rotation for table mode: recent → ytd → all → recent."""

PERIODS = ("recent", "ytd", "all")


class PeriodRotation:
    def __init__(self, start: str = "recent"):
        if start not in PERIODS:
            raise ValueError(f"Unknown period {start!r}; expected one of {', '.join(PERIODS)}")
        self._index = PERIODS.index(start)

    @property
    def current(self) -> str:
        return PERIODS[self._index]

    def advance(self) -> str:
        """Move to the next period and return it."""
        self._index = (self._index + 1) % len(PERIODS)
        return self.current
