"""
Crawl statistics: status code histogram and crawl rate.
"""

import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict

NOT_CRAWLED = -1


@dataclass
class CrawlStats:
    """Status code counts of every fetched page since start_time."""
    start_time: float = field(default_factory=time.time)
    status_codes: Dict[int, int] = field(default_factory=dict)
    elapsed_time: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def update(self, code: int):
        with self._lock:
            self.status_codes[code] = self.status_codes.get(code, 0) + 1

    def snapshot(self) -> Dict[int, int]:
        with self._lock:
            return dict(self.status_codes)

    def elapsed(self) -> 'CrawlStats':
        """Freeze the time the crawler has been running."""
        self.elapsed_time = time.time() - self.start_time
        return self

    @property
    def total(self) -> int:
        return sum(self.snapshot().values())

    def report(self) -> str:
        """Human-readable summary; empty if nothing was crawled."""
        codes: Dict[str, int] = defaultdict(int)
        total = 0
        for code, count in self.snapshot().items():
            label = "Not Crawled" if code == NOT_CRAWLED else f"{str(code)[:1]}xx"
            codes[label] += count
            total += count

        if total == 0:
            return ""

        rps = total // max(int(self.elapsed_time), 1)

        lines = [
            f"[stats] Crawled: {total} Elapsed: {self.elapsed_time:.2f}s",
            f"[stats] Rate: {rps:,} per second, {rps * 60:,} per minute, "
            f"{rps * 3600:,} per hour, {rps * 86400:,} per day",
            "[stats]" + "".join(
                f"{label} ({100 * codes[label] // total}%)  " for label in sorted(codes)),
        ]
        return "\n".join(lines) + "\n"

    def __str__(self) -> str:
        return self.report()
