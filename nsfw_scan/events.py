# nsfw_scan/events.py
import queue
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol, Tuple, Union

from PIL import Image

from nsfw_scan.photo_source import AssetRef


class ScanState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(eq=False)
class ScanItem:
    asset: AssetRef
    confidence: float = 0.0
    thumbnail: Optional[Image.Image] = None
    selected: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass(frozen=True)
class SessionSnapshot:
    state: ScanState
    total: int
    processed: int
    matches: Tuple[ScanItem, ...]

    @property
    def progress(self) -> float:
        if self.total == 0:
            return 0.0 if self.state in (ScanState.IDLE, ScanState.RUNNING) else 1.0
        return self.processed / self.total


# -----------
# Events
# -----------
@dataclass(frozen=True)
class ProgressEvent:
    processed: int
    total: int
    matches_so_far: int

    @property
    def progress(self) -> float:
        return self.processed / self.total if self.total else 1.0


@dataclass(frozen=True)
class FinishedEvent:
    state: ScanState
    matches: Tuple[ScanItem, ...]


@dataclass(frozen=True)
class WarningEvent:
    message: str
    asset: Optional[AssetRef] = None


ScanEvent = Union[ProgressEvent, FinishedEvent, WarningEvent]


class ScanObserver(Protocol):
    def on_progress(self, event: ProgressEvent) -> None: ...

    def on_finished(self, event: FinishedEvent) -> None: ...

    def on_warning(self, event: WarningEvent) -> None: ...


class QueueObserver:
    """Forwards every event to a queue, for consumers on another thread."""

    def __init__(self, q: Optional[queue.Queue] = None):
        self.queue: queue.Queue = q if q is not None else queue.Queue()

    def on_progress(self, event: ProgressEvent) -> None:
        self.queue.put(event)

    def on_finished(self, event: FinishedEvent) -> None:
        self.queue.put(event)

    def on_warning(self, event: WarningEvent) -> None:
        self.queue.put(event)

    def drain(self) -> list:
        events = []
        while True:
            try:
                events.append(self.queue.get_nowait())
            except queue.Empty:
                return events
