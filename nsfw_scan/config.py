# nsfw_scan/config.py
import os
from dataclasses import dataclass
from typing import Tuple

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

load_dotenv()  # looks for .env upward from CWD

DEFAULT_POLICY_FILE = os.path.join(os.path.dirname(__file__), "policy.yaml")


class Settings(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_path: str = Field("filters/vision.onnx", alias="MODEL_PATH")
    model_threads: int = Field(3, alias="MODEL_THREADS")
    photo_dir: str = Field("photos", alias="PHOTO_DIR")
    photo_recursive: bool = Field(True, alias="PHOTO_RECURSIVE")
    secure_dir: str = Field("SecureFolder", alias="SECURE_DIR")
    preview_size: int = Field(512, alias="PREVIEW_SIZE")
    thumbnail_size: int = Field(300, alias="THUMBNAIL_SIZE")
    policy_file: str = Field(DEFAULT_POLICY_FILE, alias="POLICY_FILE")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    @field_validator("model_threads", "preview_size", "thumbnail_size")
    @classmethod
    def positive(cls, v):
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def upper(cls, v):
        return str(v).strip().upper()


def get_settings() -> Settings:
    # Pydantic reads from env by aliases; dotenv already loaded if present.
    values = {k: v for k, v in os.environ.items()}
    return Settings.model_validate(values)


# ---------------------------
# Model contract (policy.yaml)
# ---------------------------
@dataclass(frozen=True)
class ModelPolicy:
    channel_means_bgr: Tuple[float, float, float] = (0.406, 0.456, 0.485)
    explicit_class: int = 3
    dominance_ratio: float = 0.5


def load_policy(path: str = DEFAULT_POLICY_FILE) -> ModelPolicy:
    """
    Read the model contract constants. A missing file falls back to the
    packaged policy.yaml; missing keys fall back to the defaults.
    """
    if not os.path.exists(path):
        path = DEFAULT_POLICY_FILE
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    pre = raw.get("preprocess") or {}
    dec = raw.get("decision") or {}
    defaults = ModelPolicy()
    means = tuple(float(m) for m in pre.get("channel_means_bgr", defaults.channel_means_bgr))
    if len(means) != 3:
        raise ValueError(f"channel_means_bgr needs 3 values, got {len(means)}")
    return ModelPolicy(
        channel_means_bgr=means,
        explicit_class=int(dec.get("explicit_class", defaults.explicit_class)),
        dominance_ratio=float(dec.get("dominance_ratio", defaults.dominance_ratio)),
    )


settings = get_settings()
