import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from pose_chain_registration.alignment.matchers import RegistrationOptions
from pose_chain_registration.utils.config import load_config, AppConfig


def test_registration_defaults():
    cfg: AppConfig = load_config(None)
    reg = cfg.registration
    assert reg.delta == 0.01
    assert reg.overlap_estimation == 0.2
    assert reg.terminate_threshold == 1.0
    assert reg.max_color_distance == 1e9
    assert reg.sample_size == 500
    assert reg.max_normal_difference_deg == 90.0
    assert reg.max_time_seconds == 1e9
    assert reg.use_feature_matching is False


def test_default_yaml_matches_model_defaults():
    assert load_config(None) == AppConfig()


def test_to_options_builds_immutable_options():
    cfg = load_config(None)
    opts = cfg.registration.to_options()
    assert isinstance(opts, RegistrationOptions)
    assert opts.delta == cfg.registration.delta
    assert opts.sample_size == cfg.registration.sample_size
    assert opts.overlap_estimation == cfg.registration.overlap_estimation


def test_sanitization_and_verification_defaults():
    cfg = load_config(None)
    assert cfg.sanitization.enabled is True
    assert cfg.sanitization.min_normal_norm == 0.1
    assert cfg.verification.enabled is True
    assert cfg.verification.fail_on_mismatch is True


def test_partial_yaml_overrides(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text(
        "paths:\n"
        "  conf_files: [a.conf, b.conf]\n"
        "registration:\n"
        "  sample_size: 200\n"
        "  use_feature_matching: true\n",
        encoding="utf-8",
    )
    cfg = load_config(path)
    assert cfg.paths.conf_files == ["a.conf", "b.conf"]
    assert cfg.registration.sample_size == 200
    assert cfg.registration.use_feature_matching is True
    # Untouched sections keep defaults
    assert cfg.registration.delta == 0.01
    assert cfg.logging.level == "INFO"


def test_invalid_yaml_values_raise_value_error(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("registration:\n  overlap_estimation: 2.0\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)


def test_missing_config(tmp_path):
    assert load_config(tmp_path / "nope.yaml") == AppConfig()
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", allow_missing=False)
