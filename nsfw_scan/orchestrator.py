# nsfw_scan/orchestrator.py
import time
import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from nsfw_scan.classifier import Classifier
from nsfw_scan.errors import AlreadyRunning
from nsfw_scan.events import (
    FinishedEvent,
    ProgressEvent,
    ScanItem,
    ScanObserver,
    ScanState,
    SessionSnapshot,
    WarningEvent,
)
from nsfw_scan.photo_source import AssetRef, PhotoSource
from nsfw_scan.result_store import ResultStore

log = logging.getLogger("nsfw-scan")


@dataclass
class ScanSession:
    total: int = 0
    processed: int = 0
    matches: List[ScanItem] = field(default_factory=list)
    state: ScanState = ScanState.IDLE


class ScanOrchestrator:
    """
    Drives one scan at a time on a single worker thread:
    enumerate -> fetch preview -> classify -> commit, one asset after another.

    Session mutation and observer notification share one re-entrant lock, so
    a snapshot never sees a torn state and cancel() (even from inside an
    observer callback) takes effect before the next commit.
    """

    def __init__(
        self,
        source: PhotoSource,
        classifier: Classifier,
        store: Optional[ResultStore] = None,
        preview_size: int = 512,
        thumbnail_size: int = 300,
    ):
        self.source = source
        self.classifier = classifier
        self.store = store
        self.preview_size = preview_size
        self.thumbnail_size = thumbnail_size
        self._session = ScanSession()
        self._lock = threading.RLock()
        self._observers: List[ScanObserver] = []
        self._worker: Optional[threading.Thread] = None

    # -----------
    # Observers
    # -----------
    def subscribe(self, observer: ScanObserver) -> None:
        with self._lock:
            self._observers.append(observer)

    def unsubscribe(self, observer: ScanObserver) -> None:
        with self._lock:
            self._observers.remove(observer)

    def _publish(self, method: str, event) -> None:
        for observer in list(self._observers):
            try:
                getattr(observer, method)(event)
            except Exception:
                log.exception("scan observer %r failed in %s", observer, method)

    def _warn(self, message: str, ref: Optional[AssetRef] = None) -> None:
        with self._lock:
            self._publish("on_warning", WarningEvent(message=message, asset=ref))

    # -----------
    # Control
    # -----------
    @property
    def state(self) -> ScanState:
        with self._lock:
            return self._session.state

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            s = self._session
            return SessionSnapshot(state=s.state, total=s.total, processed=s.processed, matches=tuple(s.matches))

    def start(self) -> threading.Thread:
        with self._lock:
            if self._session.state == ScanState.RUNNING:
                raise AlreadyRunning("a scan is already running")
            session = ScanSession(state=ScanState.RUNNING)
            self._session = session
            self._worker = threading.Thread(target=self._run, args=(session,), name="scan-worker", daemon=True)
            self._worker.start()
            return self._worker

    def cancel(self) -> bool:
        with self._lock:
            if self._session.state != ScanState.RUNNING:
                return False
            self._session.state = ScanState.CANCELLED
            log.info("scan cancel requested at %d/%d", self._session.processed, self._session.total)
            return True

    def wait(self, timeout: Optional[float] = None) -> SessionSnapshot:
        worker = self._worker
        if worker is not None:
            worker.join(timeout)
        return self.snapshot()

    # -----------
    # Worker
    # -----------
    def _enumerate(self) -> List[AssetRef]:
        n = self.source.count()
        return [self.source.asset_at(i) for i in range(n)]

    def _process(self, ref: AssetRef) -> Optional[ScanItem]:
        try:
            img = self.source.fetch_pixels(ref, self.preview_size)
        except Exception as e:
            self._warn(f"could not load {ref.identifier}: {e}", ref)
            return None

        try:
            result = self.classifier.classify(img)
        except Exception as e:
            log.exception("unexpected error classifying %s", ref.identifier)
            self._warn(f"classification failed for {ref.identifier}: {e}", ref)
            return None
        if result.error:
            self._warn(f"classification failed for {ref.identifier}: {result.error}", ref)
        if not result.verdict:
            return None

        # identity is captured now; the thumbnail is best effort
        item = ScanItem(asset=ref, confidence=result.confidence)
        try:
            item.thumbnail = self.source.fetch_pixels(ref, self.thumbnail_size)
        except Exception as e:
            self._warn(f"no thumbnail for {ref.identifier}: {e}", ref)
        return item

    def _run(self, session: ScanSession) -> None:
        t0 = time.time()
        try:
            refs = self._enumerate()
        except Exception as e:
            log.exception("enumerating photos failed")
            with self._lock:
                self._publish("on_warning", WarningEvent(message=f"could not enumerate photos: {e}"))
                if session.state == ScanState.RUNNING:
                    session.state = ScanState.CANCELLED
            self._finish(session, t0)
            return

        with self._lock:
            session.total = len(refs)
        log.info("scan started: %d photos", len(refs))

        for ref in refs:
            if session.state != ScanState.RUNNING:
                break
            item = self._process(ref)
            with self._lock:
                if session.state != ScanState.RUNNING:
                    break  # in-flight result is discarded
                if item is not None:
                    session.matches.append(item)
                    log.info("explicit image %s (%.1f%%)", ref.identifier, item.confidence * 100)
                session.processed += 1
                self._publish("on_progress", ProgressEvent(
                    processed=session.processed,
                    total=session.total,
                    matches_so_far=len(session.matches),
                ))

        with self._lock:
            if session.state == ScanState.RUNNING:
                session.state = ScanState.COMPLETED
        self._finish(session, t0)

    def _finish(self, session: ScanSession, t0: float) -> None:
        with self._lock:
            matches = tuple(session.matches)
            state = session.state
            current = self._session is session
            if current:
                if state == ScanState.COMPLETED and self.store is not None:
                    self.store.load(matches)
                self._publish("on_finished", FinishedEvent(state=state, matches=matches))

        if not current:
            log.info("superseded scan %s after %d/%d photos", state.value, session.processed, session.total)
            return
        rate = len(matches) / max(session.processed, 1) * 100
        log.info(
            "scan %s: %d/%d photos scanned, %d explicit (%.1f%%) in %.1fs",
            state.value, session.processed, session.total, len(matches), rate, time.time() - t0,
        )
