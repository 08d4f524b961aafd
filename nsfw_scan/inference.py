# nsfw_scan/inference.py
import os
import logging
import threading
from typing import Callable, List, Optional, Protocol

import torch

from nsfw_scan.errors import BackendUnavailable, InferenceFailed

log = logging.getLogger("nsfw-scan")

NUM_CLASSES = 4


class InferenceBackend(Protocol):
    def __call__(self, x: torch.Tensor) -> torch.Tensor:
        """x: [1,3,224,224] float32 -> raw class scores (4 values)."""
        ...


# -----------------
# Backends
# -----------------
class TorchScriptBackend:
    def __init__(self, path: str, threads: int):
        torch.set_num_threads(threads)
        self.model = torch.jit.load(path, map_location="cpu").eval()

    def __call__(self, x: torch.Tensor) -> torch.Tensor:
        with torch.no_grad():
            return self.model(x)


class OnnxBackend:
    def __init__(self, path: str, threads: int):
        import onnxruntime as ort

        opts = ort.SessionOptions()
        opts.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_EXTENDED
        opts.intra_op_num_threads = threads
        self.session = ort.InferenceSession(path, sess_options=opts, providers=["CPUExecutionProvider"])
        self.input_name = self.session.get_inputs()[0].name
        self.output_name = self.session.get_outputs()[0].name
        log.info("ONNX input names: %s", [i.name for i in self.session.get_inputs()])
        log.info("ONNX output names: %s", [o.name for o in self.session.get_outputs()])

    def __call__(self, x: torch.Tensor) -> torch.Tensor:
        out = self.session.run([self.output_name], {self.input_name: x.numpy()})
        return torch.as_tensor(out[0])


def load_backend(path: str, threads: int) -> InferenceBackend:
    if not os.path.exists(path):
        raise BackendUnavailable(f"model artifact not found: {path}")
    if path.lower().endswith(".onnx"):
        return OnnxBackend(path, threads)
    return TorchScriptBackend(path, threads)


# -----------------
# Session wrapper
# -----------------
class ModelLoader:
    """
    Loads the backend once on a background thread and serializes every
    inference call: the backend is a single shared, non-reentrant resource.
    infer() never waits for loading, it fails with BackendUnavailable instead.
    """

    def __init__(
        self,
        model_path: str,
        threads: int = 3,
        loader: Callable[[str, int], InferenceBackend] = load_backend,
    ):
        self.model_path = model_path
        self.threads = threads
        self._loader = loader
        self._backend: Optional[InferenceBackend] = None
        self.loading_error: Optional[str] = None
        self._loaded = threading.Event()
        self._infer_lock = threading.Lock()
        self._thread = threading.Thread(target=self._load, name="model-loader", daemon=True)
        self._thread.start()

    def _load(self):
        try:
            self._backend = self._loader(self.model_path, self.threads)
            log.info("Loaded model from %s (%d threads)", self.model_path, self.threads)
        except Exception as e:
            self.loading_error = str(e) or type(e).__name__
            log.warning("Failed to load model %s: %s", self.model_path, e)
        finally:
            self._loaded.set()

    @property
    def is_loaded(self) -> bool:
        return self._loaded.is_set() and self._backend is not None

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until loading finished (successfully or not). True if usable."""
        self._loaded.wait(timeout)
        return self.is_loaded

    def infer(self, x: torch.Tensor) -> List[float]:
        if not self._loaded.is_set():
            raise BackendUnavailable("model is still loading")
        if self._backend is None:
            raise BackendUnavailable(f"model failed to load: {self.loading_error}")

        if x.ndim == 3:
            x = x.unsqueeze(0)  # [1,3,224,224]
        with self._infer_lock:
            try:
                out = self._backend(x)
            except Exception as e:
                raise InferenceFailed(f"backend error: {e}") from e

        scores = torch.as_tensor(out).detach().float().flatten().tolist()
        if len(scores) != NUM_CLASSES:
            raise InferenceFailed(f"expected {NUM_CLASSES} class scores, got {len(scores)}")
        return scores
