import time


class CpuTimer:
    """Accumulating stopwatch: ``tick()`` adds the time since the last tick."""

    def __init__(self):
        self._last = time.perf_counter()
        self._accumulated = 0.0

    def tick(self) -> float:
        now = time.perf_counter()
        self._accumulated += now - self._last
        self._last = now
        return self._accumulated

    def accumulated(self) -> float:
        return self._accumulated

    def reset(self) -> None:
        self._last = time.perf_counter()
        self._accumulated = 0.0
