# nsfw_scan/tests/test_config.py
import pydantic
import pytest

from nsfw_scan import config


def test_defaults(monkeypatch):
    for var in ("MODEL_PATH", "MODEL_THREADS", "SECURE_DIR", "LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    s = config.get_settings()
    assert s.model_path == "filters/vision.onnx"
    assert s.model_threads == 3
    assert s.secure_dir == "SecureFolder"
    assert s.thumbnail_size == 300


def test_env_var_overrides(monkeypatch):
    monkeypatch.setenv("MODEL_PATH", "/models/vision.ts")
    monkeypatch.setenv("MODEL_THREADS", "1")
    monkeypatch.setenv("PHOTO_RECURSIVE", "false")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    s = config.get_settings()
    assert s.model_path == "/models/vision.ts"
    assert s.model_threads == 1
    assert s.photo_recursive is False
    assert s.log_level == "DEBUG"


def test_invalid_thread_count(monkeypatch):
    monkeypatch.setenv("MODEL_THREADS", "0")
    with pytest.raises(pydantic.ValidationError):
        config.get_settings()


def test_packaged_policy():
    p = config.load_policy()
    assert p.channel_means_bgr == (0.406, 0.456, 0.485)
    assert p.explicit_class == 3
    assert p.dominance_ratio == 0.5


def test_policy_file_overrides(tmp_path):
    f = tmp_path / "policy.yaml"
    f.write_text("decision:\n  dominance_ratio: 0.25\n")
    p = config.load_policy(str(f))
    assert p.dominance_ratio == 0.25
    # untouched keys keep the model defaults
    assert p.explicit_class == 3
    assert p.channel_means_bgr == (0.406, 0.456, 0.485)


def test_missing_policy_falls_back_to_packaged(tmp_path):
    assert config.load_policy(str(tmp_path / "absent.yaml")) == config.ModelPolicy()


def test_bad_means(tmp_path):
    f = tmp_path / "policy.yaml"
    f.write_text("preprocess:\n  channel_means_bgr: [0.4, 0.4]\n")
    with pytest.raises(ValueError):
        config.load_policy(str(f))
