# nsfw_scan/tests/test_inference.py
import threading
import time

import pytest
import torch

from nsfw_scan.errors import BackendUnavailable, InferenceFailed
from nsfw_scan.export_stub import EXPLICIT_LOGITS, SAFE_LOGITS, export_stub
from nsfw_scan.inference import ModelLoader, load_backend
from nsfw_scan.preprocess import TENSOR_SHAPE

from conftest import make_loader


def test_infer_fails_fast_while_loading():
    release = threading.Event()

    def slow_loader(path, threads):
        release.wait(5)
        return lambda x: torch.tensor([[0.25, 0.25, 0.25, 0.25]])

    m = ModelLoader("slow.ts", threads=1, loader=slow_loader)
    try:
        assert m.is_loaded is False
        with pytest.raises(BackendUnavailable):
            m.infer(torch.zeros(TENSOR_SHAPE))
    finally:
        release.set()
    assert m.wait(5) is True
    assert m.infer(torch.zeros(TENSOR_SHAPE)) == pytest.approx([0.25] * 4)


def test_missing_artifact_is_reported(tmp_path):
    m = ModelLoader(str(tmp_path / "nope.onnx"), threads=1)
    assert m.wait(5) is False
    assert "not found" in m.loading_error
    with pytest.raises(BackendUnavailable):
        m.infer(torch.zeros(TENSOR_SHAPE))


def test_load_backend_missing_file(tmp_path):
    with pytest.raises(BackendUnavailable):
        load_backend(str(tmp_path / "vision.ts"), 1)


def test_batch_dimension_is_added():
    seen = []

    def backend(x):
        seen.append(tuple(x.shape))
        return torch.tensor([[0.1, 0.1, 0.1, 0.7]])

    m = make_loader(backend)
    assert m.infer(torch.zeros(TENSOR_SHAPE)) == pytest.approx([0.1, 0.1, 0.1, 0.7])
    assert seen == [(1, 3, 224, 224)]


def test_backend_error_becomes_inference_failed():
    def broken(x):
        raise RuntimeError("kernel exploded")

    m = make_loader(broken)
    with pytest.raises(InferenceFailed):
        m.infer(torch.zeros(TENSOR_SHAPE))


def test_wrong_output_size_is_rejected():
    m = make_loader(lambda x: torch.tensor([[1.0, 2.0]]))
    with pytest.raises(InferenceFailed):
        m.infer(torch.zeros(TENSOR_SHAPE))


def test_at_most_one_call_in_flight():
    active = 0
    peak = 0
    guard = threading.Lock()

    def backend(x):
        nonlocal active, peak
        with guard:
            active += 1
            peak = max(peak, active)
        time.sleep(0.01)
        with guard:
            active -= 1
        return torch.tensor([[0.25, 0.25, 0.25, 0.25]])

    m = make_loader(backend)
    threads = [threading.Thread(target=m.infer, args=(torch.zeros(TENSOR_SHAPE),)) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)
    assert peak == 1


@pytest.mark.parametrize("logits", [SAFE_LOGITS, EXPLICIT_LOGITS])
def test_torchscript_stub_roundtrip(tmp_path, logits):
    path = export_stub(str(tmp_path / "filters" / "vision.ts"), logits)
    m = ModelLoader(path, threads=1)
    assert m.wait(30) is True, m.loading_error
    assert m.infer(torch.zeros(TENSOR_SHAPE)) == pytest.approx(list(logits))
