# superview/utils/timer.py

import time
from typing import Dict, List, Optional


class Timer:
    """Stage timings, captured as ``[{"EVENT": seconds}, ...]``."""

    def __init__(self):
        self.timings: List[Dict[str, float]] = []
        self.start_time = time.time()
        self.last_time = self.start_time

    def capture_and_reset_timing(self, event: str) -> None:
        now = time.time()
        self.timings.append({event: round(now - self.last_time, 6)})
        self.last_time = now

    def capture_duration(self, event: str) -> None:
        self.timings.append({event: round(time.time() - self.start_time, 6)})

    def get(self, event: str) -> Optional[float]:
        return next((t[event] for t in self.timings if event in t), None)
