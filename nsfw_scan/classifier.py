# nsfw_scan/classifier.py
import time
import logging

from PIL import Image

from nsfw_scan.config import ModelPolicy
from nsfw_scan.decision import DEFAULT_POLICY, ClassificationResult, decide
from nsfw_scan.errors import BackendUnavailable, InferenceFailed, InvalidInput
from nsfw_scan.inference import ModelLoader
from nsfw_scan.preprocess import preprocess

log = logging.getLogger("nsfw-scan")


class Classifier:
    """preprocess -> infer -> decide. Failures degrade to a safe verdict."""

    def __init__(self, session: ModelLoader, policy: ModelPolicy = DEFAULT_POLICY):
        self.session = session
        self.policy = policy

    def classify(self, img: Image.Image) -> ClassificationResult:
        try:
            x = preprocess(img, self.policy.channel_means_bgr)
            t0 = time.time()
            raw = self.session.infer(x)
            result = decide(raw, self.policy)
        except (InvalidInput, BackendUnavailable, InferenceFailed) as e:
            log.warning("classification failed, treating as safe: %s", e)
            return ClassificationResult(verdict=False, confidence=0.0, error=f"{type(e).__name__}: {e}")

        if log.isEnabledFor(logging.DEBUG):
            self._log_scores(result, time.time() - t0)
        return result

    def _log_scores(self, result: ClassificationResult, dt: float):
        probs = result.probabilities
        top = max(range(len(probs)), key=lambda i: (probs[i], -i))
        explicit = self.policy.explicit_class
        for i, p in enumerate(probs):
            kind = "explicit" if i == explicit else "safe"
            log.debug("  class %d (%s): %.3f%s", i, kind, p, " *" if i == top else "")
        if top == explicit:
            second = max(p for i, p in enumerate(probs) if i != top)
            log.debug("  dominance: %.3f < %.3f = %s",
                      second, result.confidence * self.policy.dominance_ratio,
                      second < result.confidence * self.policy.dominance_ratio)
        log.debug("  result=%s inference=%.3fs", result.label, dt)
