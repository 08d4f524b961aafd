# nsfw_scan/decision.py
import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from nsfw_scan.config import ModelPolicy
from nsfw_scan.errors import InferenceFailed

DEFAULT_POLICY = ModelPolicy()
SUM_TOLERANCE = 1e-3


@dataclass(frozen=True)
class ClassificationResult:
    verdict: bool
    confidence: float  # explicit-class probability, independent of verdict
    probabilities: Tuple[float, ...] = ()
    error: Optional[str] = None

    @property
    def label(self) -> str:
        return "explicit" if self.verdict else "safe"


def softmax(values: Sequence[float]) -> Tuple[float, ...]:
    m = max(values)
    exps = [math.exp(v - m) for v in values]
    total = sum(exps)
    return tuple(e / total for e in exps)


def to_probabilities(raw: Sequence[float]) -> Tuple[float, ...]:
    """Already-normalized vectors pass through; anything else is treated as logits."""
    values = [float(v) for v in raw]
    if all(0.0 <= v <= 1.0 for v in values) and abs(sum(values) - 1.0) <= SUM_TOLERANCE:
        return tuple(values)
    return softmax(values)


def decide(raw: Sequence[float], policy: ModelPolicy = DEFAULT_POLICY) -> ClassificationResult:
    if len(raw) != 4:
        raise InferenceFailed(f"expected 4 class scores, got {len(raw)}")
    if not all(math.isfinite(float(v)) for v in raw):
        raise InferenceFailed("non-finite class score")

    probs = to_probabilities(raw)
    nsfw = probs[policy.explicit_class]

    # first index wins on exact ties
    max_index = 0
    for i, p in enumerate(probs):
        if p > probs[max_index]:
            max_index = i
    second = max(p for i, p in enumerate(probs) if i != max_index)

    verdict = max_index == policy.explicit_class and second < nsfw * policy.dominance_ratio
    return ClassificationResult(verdict=verdict, confidence=nsfw, probabilities=probs)
