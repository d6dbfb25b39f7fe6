# tests/test_config_validators.py

import config
import pytest
from config import BoundaryThresholds, ContinuitySettings, RunConfig


def test_openai_key_placeholder_warns(monkeypatch):
    warnings: list[str] = []

    def fake_warning(msg: str, **_kw: object) -> None:
        warnings.append(msg)

    monkeypatch.setattr(config.logger, "warning", fake_warning)
    ContinuitySettings(OPENAI_API_KEY="nope")
    assert any("OPENAI_API_KEY" in msg for msg in warnings)


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        ContinuitySettings(OPENAI_API_KEY="valid", SUMMARY_INTERVAL=0)


def test_dynamic_model_defaults():
    s = ContinuitySettings(OPENAI_API_KEY="valid", LARGE_MODEL="big", SMALL_MODEL="small")
    assert s.DRAFTING_MODEL == "big"
    assert s.SUMMARY_MODEL == "big"
    assert s.CLASSIFICATION_MODEL == "small"


def test_run_config_from_settings_with_overrides():
    s = ContinuitySettings(OPENAI_API_KEY="valid", SUMMARY_INTERVAL=7, MIN_COMPLETE_CHARS=42)
    run = RunConfig.from_settings(s, entity_interval=3)
    assert run.summary_interval == 7
    assert run.min_complete_chars == 42
    assert run.entity_interval == 3
    assert run.thresholds == BoundaryThresholds()


def test_run_config_is_frozen_and_validated():
    run = RunConfig()
    with pytest.raises(ValueError):
        run.summary_interval = 3
    with pytest.raises(ValueError):
        RunConfig(entity_interval=0)
