import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .config import Settings
from .metrics import Metrics
from .storage import Datastore


class LifecycleState(str, Enum):
    STARTING = "starting"
    READY = "ready"
    DRAINING = "draining"
    STOPPED = "stopped"


class RequestIdGenerator:
    """Nanosecond timestamps, bumped when two requests land on the same tick."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last = 0

    def __call__(self) -> str:
        with self._lock:
            value = max(time.time_ns(), self._last + 1)
            self._last = value
        return str(value)


@dataclass
class RequestMeta:
    request_id: str
    started_at: float = field(default_factory=time.perf_counter)


class AppContext:
    """Everything a request handler may need that outlives a single request."""

    def __init__(
        self,
        settings: Settings,
        datastore: Optional[Datastore] = None,
        metrics: Optional[Metrics] = None,
    ) -> None:
        self.settings = settings
        self.datastore = datastore or Datastore(
            settings.DATABASE_URL,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=settings.DB_POOL_RECYCLE,
        )
        self.metrics = metrics or Metrics()
        self.next_request_id = RequestIdGenerator()

        self._state = LifecycleState.STARTING
        self._healthy = threading.Event()

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def healthy(self) -> bool:
        return self._healthy.is_set()

    def mark_ready(self) -> None:
        if self._state is not LifecycleState.STARTING:
            return
        self._state = LifecycleState.READY
        self._healthy.set()

    def begin_draining(self) -> None:
        # clear first so /health flips before anything else happens
        self._healthy.clear()
        if self._state in (LifecycleState.STARTING, LifecycleState.READY):
            self._state = LifecycleState.DRAINING

    def mark_stopped(self) -> None:
        self._healthy.clear()
        self._state = LifecycleState.STOPPED
