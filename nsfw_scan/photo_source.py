# nsfw_scan/photo_source.py
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Protocol

from PIL import Image

from nsfw_scan.errors import DeletionFailed

log = logging.getLogger("nsfw-scan")


@dataclass(frozen=True)
class AssetRef:
    """Opaque, hashable reference to one asset, stable for a scan session."""

    identifier: str


class PhotoSource(Protocol):
    def count(self) -> int: ...

    def asset_at(self, index: int) -> AssetRef: ...

    def fetch_pixels(self, ref: AssetRef, target_size: int) -> Image.Image: ...

    def fetch_raw_bytes(self, ref: AssetRef) -> bytes: ...

    def delete_assets(self, refs: Iterable[AssetRef]) -> None: ...

    def filename(self, ref: AssetRef) -> Optional[str]: ...


class DirectoryPhotoSource:
    """Image files under a directory, newest first."""

    IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".tiff", ".tif"}

    def __init__(self, root: str | Path, recursive: bool = True):
        self.root = Path(root)
        self.recursive = recursive
        self._assets: List[AssetRef] = []

    @classmethod
    def is_image(cls, filepath: str | Path) -> bool:
        return Path(filepath).suffix.lower() in cls.IMAGE_EXTENSIONS

    @staticmethod
    def creation_time(filepath: Path) -> float:
        """Birth time where the platform has one, modification time otherwise."""
        stat = filepath.stat()
        return getattr(stat, "st_birthtime", stat.st_mtime)

    def count(self) -> int:
        """Re-enumerate the directory; asset_at() indexes this listing."""
        if not self.root.is_dir():
            self._assets = []
            return 0

        files = self.root.rglob("*") if self.recursive else self.root.glob("*")
        dated = []
        for filepath in files:
            if filepath.is_file() and self.is_image(filepath):
                try:
                    dated.append((self.creation_time(filepath), str(filepath.resolve())))
                except OSError as e:
                    log.warning("Could not stat %s: %s", filepath, e)
        # newest first, path breaks ties so the order is total
        dated.sort(key=lambda t: (-t[0], t[1]))
        self._assets = [AssetRef(path) for _, path in dated]
        return len(self._assets)

    def asset_at(self, index: int) -> AssetRef:
        return self._assets[index]

    def fetch_pixels(self, ref: AssetRef, target_size: int) -> Image.Image:
        with Image.open(ref.identifier) as img:
            img.draft("RGB", (target_size, target_size))  # cheap JPEG downscale
            img.thumbnail((target_size, target_size))     # aspect fit
            return img.copy()

    def fetch_raw_bytes(self, ref: AssetRef) -> bytes:
        return Path(ref.identifier).read_bytes()

    def filename(self, ref: AssetRef) -> Optional[str]:
        return os.path.basename(ref.identifier) or None

    def delete_assets(self, refs: Iterable[AssetRef]) -> None:
        """Unlink every path; on any failure raise DeletionFailed naming the refs that did go."""
        deleted: List[AssetRef] = []
        failed: List[str] = []
        for ref in refs:
            try:
                Path(ref.identifier).unlink()
            except OSError as e:
                log.warning("Could not delete %s: %s", ref.identifier, e)
                failed.append(ref.identifier)
                continue
            deleted.append(ref)
        log.info("Deleted %d assets from %s", len(deleted), self.root)
        if failed:
            raise DeletionFailed(f"could not delete {len(failed)} assets: {failed}", deleted=deleted)
