import threading
from collections import defaultdict
from typing import Dict, Tuple


class Metrics:
    """In-process request counters, rendered as plain text at /metrics."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # (path, status) -> count
        self._http_requests_total: Dict[Tuple[str, str], int] = defaultdict(int)
        # result -> count (for /add)
        self._submit_requests_total: Dict[str, int] = defaultdict(int)
        # simple latency buckets in ms
        self._latency_buckets = {
            "100": 0,
            "500": 0,
            "+Inf": 0,
        }
        self._latency_count = 0

    def inc_http_request(self, path: str, status: int) -> None:
        with self._lock:
            self._http_requests_total[(path, str(status))] += 1

    def inc_submit_result(self, result: str) -> None:
        with self._lock:
            self._submit_requests_total[result] += 1

    def observe_latency_ms(self, latency_ms: float) -> None:
        with self._lock:
            self._latency_count += 1
            if latency_ms <= 100:
                self._latency_buckets["100"] += 1
            if latency_ms <= 500:
                self._latency_buckets["500"] += 1
            self._latency_buckets["+Inf"] += 1

    def submit_count(self, result: str) -> int:
        with self._lock:
            return self._submit_requests_total.get(result, 0)

    def render(self) -> str:
        """Return plain text metrics."""
        lines: list[str] = []

        with self._lock:
            for (path, status), value in self._http_requests_total.items():
                lines.append(
                    f'http_requests_total{{path="{path}",status="{status}"}} {value}'
                )

            for result, value in self._submit_requests_total.items():
                lines.append(f'submit_requests_total{{result="{result}"}} {value}')

            for le, value in self._latency_buckets.items():
                lines.append(f'request_latency_ms_bucket{{le="{le}"}} {value}')
            lines.append(f"request_latency_ms_count {self._latency_count}")

        return "\n".join(lines) + "\n"
