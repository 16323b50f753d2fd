import re
from typing import Optional
from mbc.domain.models import ProgressState

# Matches 'time=00:01:02.50' as well as bare 'time=62.5'
TIME_REGEX = re.compile(r"time=([\d.:]+)")

def parse_time_token(token: str) -> Optional[float]:
    """Converts an ffmpeg time value (HH:MM:SS.ss or seconds) to seconds."""
    try:
        if ":" in token:
            parts = token.split(":")
            if len(parts) != 3:
                return None
            h, m, s = (float(p or 0) for p in parts)
            return h * 3600 + m * 60 + s
        return float(token)
    except ValueError:
        return None

def format_duration(seconds: Optional[float]) -> str:
    """Formats seconds as HH:MM:SS, or MM:SS below one hour."""
    if seconds is None or seconds < 0:
        return "--:--"
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"

class ProgressTracker:
    """Turns encoder stderr lines into monotonic progress states.

    Percent stays below 100 until complete() is called after a clean exit.
    """

    def __init__(self, expected_total: Optional[float] = None):
        self.state = ProgressState(expected_total_seconds=expected_total)
        self.overrun = False

    @property
    def expected_total(self) -> Optional[float]:
        return self.state.expected_total_seconds

    def feed(self, line: str) -> Optional[ProgressState]:
        """Returns a new state when the line advances elapsed time, otherwise None."""
        match = TIME_REGEX.search(line)
        if not match:
            return None
        current = parse_time_token(match.group(1))
        if current is None or current <= self.state.elapsed_seconds:
            return None

        percent = None
        if self.expected_total:
            percent = min(99.0, current / self.expected_total * 100)
            if current > self.expected_total:
                self.overrun = True

        self.state = ProgressState(
            elapsed_seconds=current,
            expected_total_seconds=self.expected_total,
            percent=percent
        )
        return self.state

    def complete(self) -> ProgressState:
        self.state = ProgressState(
            elapsed_seconds=self.state.elapsed_seconds,
            expected_total_seconds=self.expected_total,
            percent=100.0
        )
        return self.state
