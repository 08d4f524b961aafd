# nsfw_scan/result_store.py
import os
import uuid
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List

from nsfw_scan.errors import DeletionFailed, MoveFailed
from nsfw_scan.events import ScanItem
from nsfw_scan.photo_source import PhotoSource

log = logging.getLogger("nsfw-scan")


@dataclass
class MoveReport:
    moved: List[ScanItem] = field(default_factory=list)
    written: List[Path] = field(default_factory=list)
    failed: List[MoveFailed] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class ResultStore:
    """
    Flagged items of the last completed scan plus their selection state.
    External deletions always happen before the in-memory list changes.
    """

    def __init__(self, source: PhotoSource, secure_dir: str | Path = "SecureFolder"):
        self.source = source
        self.secure_dir = Path(secure_dir)
        self._items: List[ScanItem] = []
        self._lock = threading.RLock()

    def load(self, items: Iterable[ScanItem]) -> None:
        with self._lock:
            self._items = list(items)

    def items(self) -> List[ScanItem]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    # -----------
    # Selection
    # -----------
    def toggle(self, index: int) -> bool:
        with self._lock:
            if not 0 <= index < len(self._items):
                raise IndexError(f"no result at index {index}")
            item = self._items[index]
            item.selected = not item.selected
            return item.selected

    def select_all(self) -> None:
        with self._lock:
            for item in self._items:
                item.selected = True

    def deselect_all(self) -> None:
        with self._lock:
            for item in self._items:
                item.selected = False

    def selected(self) -> List[ScanItem]:
        with self._lock:
            return [item for item in self._items if item.selected]

    # -----------
    # Mutation
    # -----------
    def _remove(self, items: Iterable[ScanItem]) -> None:
        gone = {item.asset for item in items}
        self._items = [item for item in self._items if item.asset not in gone]

    def _delete_from_source(self, items: List[ScanItem], report=None) -> None:
        """
        Delete items' assets from the source, then drop from memory exactly
        the items whose assets are gone.
        """
        refs = {item.asset for item in items}
        try:
            self.source.delete_assets(refs)
        except DeletionFailed as e:
            gone = set(e.deleted) & refs
            self._remove([item for item in items if item.asset in gone])
            log.warning("delete of %d assets failed, %d removed anyway: %s", len(refs), len(gone), e)
            raise DeletionFailed(str(e), deleted=[r for r in e.deleted if r in gone], report=report) from e
        except Exception as e:
            log.warning("delete of %d assets failed: %s", len(refs), e)
            raise DeletionFailed(str(e), report=report) from e
        self._remove(items)

    def delete(self, items: Iterable[ScanItem]) -> None:
        items = list(items)
        if not items:
            return
        with self._lock:
            self._delete_from_source(items)
            log.info("Deleted %d flagged items, %d remain", len(items), len(self._items))

    def _write_unique(self, filename: str, data: bytes) -> Path:
        target = self.secure_dir / filename
        try:
            with open(target, "xb") as f:
                f.write(data)
            return target
        except FileExistsError:
            pass
        target = self.secure_dir / f"{uuid.uuid4().hex}_{filename}"
        with open(target, "xb") as f:
            f.write(data)
        return target

    def move_to_secure_location(self, items: Iterable[ScanItem]) -> MoveReport:
        """
        Copy each item's original bytes into secure_dir, then delete only the
        copied subset from the source. Items that could not be copied stay in
        the store and are listed in report.failed.
        """
        items = list(items)
        report = MoveReport()
        if not items:
            return report

        with self._lock:
            self.secure_dir.mkdir(parents=True, exist_ok=True)
            for item in items:
                try:
                    data = self.source.fetch_raw_bytes(item.asset)
                    name = self.source.filename(item.asset) or f"{uuid.uuid4().hex}.jpg"
                    path = self._write_unique(os.path.basename(name), data)
                except Exception as e:
                    log.warning("could not move %s: %s", item.asset.identifier, e)
                    report.failed.append(MoveFailed(item, str(e)))
                    continue
                report.moved.append(item)
                report.written.append(path)

            if report.moved:
                # copies in secure_dir are kept even if originals survive
                self._delete_from_source(report.moved, report=report)

        log.info("Moved %d items to %s, %d failed", len(report.moved), self.secure_dir, len(report.failed))
        return report
