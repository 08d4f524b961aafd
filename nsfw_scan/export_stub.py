# nsfw_scan/export_stub.py
# Writes a TorchScript stand-in for the vision model: fixed 4-class logits for any input.
import os
import sys
from typing import Sequence

import torch
import torch.nn as nn

SAFE_LOGITS = (4.0, 1.0, 1.0, 0.0)       # class 0 wins
EXPLICIT_LOGITS = (0.0, 0.0, 0.0, 10.0)  # explicit dominates


class ClassStub(nn.Module):
    def __init__(self, logits: Sequence[float] = SAFE_LOGITS):
        super().__init__()
        self.register_buffer("logits", torch.tensor(list(logits), dtype=torch.float32))

    def forward(self, x):
        # x shape (N, 3, 224, 224); ignored
        return self.logits.unsqueeze(0).expand(x.size(0), -1)


def export_stub(path: str = "filters/vision.ts", logits: Sequence[float] = SAFE_LOGITS) -> str:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    m = ClassStub(logits).eval()
    example = torch.randn(1, 3, 224, 224)
    ts = torch.jit.trace(m, example)
    ts.save(path)
    return path


if __name__ == "__main__":
    out = sys.argv[1] if len(sys.argv) > 1 else "filters/vision.ts"
    explicit = "--explicit" in sys.argv[2:]
    export_stub(out, EXPLICIT_LOGITS if explicit else SAFE_LOGITS)
    print("wrote", out, "(explicit stub)" if explicit else "(safe stub)")
