# nsfw_scan/tests/conftest.py
# pytest fixtures: fake inference backend, in-memory photo source, recording observer
import io
import threading

import pytest
import torch
from PIL import Image

from nsfw_scan.classifier import Classifier
from nsfw_scan.errors import DeletionFailed
from nsfw_scan.inference import ModelLoader
from nsfw_scan.photo_source import AssetRef

RED = (255, 0, 0)
BLUE = (0, 0, 255)

EXPLICIT_PROBS = [0.05, 0.05, 0.10, 0.80]
SAFE_PROBS = [0.90, 0.04, 0.03, 0.03]


def color_backend(x: torch.Tensor) -> torch.Tensor:
    """Red-dominant images are 'explicit', everything else is 'safe'."""
    # x is [1,3,224,224] in B,G,R order with means subtracted
    blue = x[0, 0].mean().item() + 0.406
    red = x[0, 2].mean().item() + 0.485
    if red > 0.8 and blue < 0.2:
        return torch.tensor([EXPLICIT_PROBS])
    return torch.tensor([SAFE_PROBS])


def make_loader(backend=color_backend) -> ModelLoader:
    loader = ModelLoader("fake.ts", threads=1, loader=lambda path, threads: backend)
    assert loader.wait(5)
    return loader


class MemoryPhotoSource:
    """PhotoSource over a dict of id -> PIL image, enumerated in insertion order."""

    def __init__(self, images=None, filenames=None):
        self.images = dict(images or {})
        self.order = list(self.images)
        self.filenames = dict(filenames or {})
        self.deleted = []
        self.delete_calls = 0
        self.fail_delete = False
        self.fail_delete_ids = set()
        self.fail_fetch = set()
        self.fail_bytes = set()
        self.fail_thumbnail = set()
        self.fetch_hook = None  # called with (ref, target_size) before each fetch

    def count(self):
        return len(self.order)

    def asset_at(self, index):
        return AssetRef(self.order[index])

    def fetch_pixels(self, ref, target_size):
        if self.fetch_hook is not None:
            self.fetch_hook(ref, target_size)
        if ref.identifier in self.fail_fetch:
            raise OSError(f"cannot decode {ref.identifier}")
        if target_size < 400 and ref.identifier in self.fail_thumbnail:
            raise OSError(f"no preview for {ref.identifier}")
        img = self.images[ref.identifier].copy()
        img.thumbnail((target_size, target_size))
        return img

    def fetch_raw_bytes(self, ref):
        if ref.identifier in self.fail_bytes:
            raise OSError(f"cannot read {ref.identifier}")
        buf = io.BytesIO()
        self.images[ref.identifier].save(buf, format="PNG")
        return buf.getvalue()

    def filename(self, ref):
        return self.filenames.get(ref.identifier, f"{ref.identifier}.png")

    def delete_assets(self, refs):
        self.delete_calls += 1
        if self.fail_delete:
            raise OSError("photo library refused the change")
        deleted = []
        for ref in sorted(refs, key=lambda r: r.identifier):
            if ref.identifier in self.fail_delete_ids:
                continue
            self.images.pop(ref.identifier)
            self.order.remove(ref.identifier)
            self.deleted.append(ref.identifier)
            deleted.append(ref)
        if len(deleted) != len(refs):
            raise DeletionFailed("some assets could not be deleted", deleted=deleted)


class RecordingObserver:
    def __init__(self, on_progress=None):
        self.events = []
        self.progress = []
        self.finished = []
        self.warnings = []
        self.done = threading.Event()
        self._on_progress = on_progress

    def on_progress(self, event):
        self.events.append(event)
        self.progress.append(event)
        if self._on_progress is not None:
            self._on_progress(event)

    def on_finished(self, event):
        self.events.append(event)
        self.finished.append(event)
        self.done.set()

    def on_warning(self, event):
        self.events.append(event)
        self.warnings.append(event)


def solid(color, size=(64, 48)) -> Image.Image:
    return Image.new("RGB", size, color=color)


@pytest.fixture()
def loader():
    return make_loader()


@pytest.fixture()
def classifier(loader):
    return Classifier(loader)


@pytest.fixture()
def mixed_source():
    # a0 safe, a1 explicit, a2 safe, a3 explicit, a4 safe
    colors = [BLUE, RED, BLUE, RED, BLUE]
    return MemoryPhotoSource({f"a{i}": solid(c) for i, c in enumerate(colors)})


@pytest.fixture()
def observer():
    return RecordingObserver()
