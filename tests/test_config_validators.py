# tests/test_config_validators.py

import config
import pytest
from config import CadenceSettings


def test_role_models_default_to_default_model():
    cfg = CadenceSettings(DEFAULT_MODEL="base-model", SUMMARY_MODEL=None)
    assert cfg.SUMMARY_MODEL == "base-model"
    assert cfg.PACING_MODEL == "base-model"
    assert cfg.DRAFTING_MODEL == "base-model"


def test_explicit_role_model_is_kept():
    cfg = CadenceSettings(DEFAULT_MODEL="base-model", PACING_MODEL="judge")
    assert cfg.PACING_MODEL == "judge"
    assert cfg.MINING_MODEL == "base-model"


@pytest.mark.parametrize(
    "overrides",
    [
        {"REWRITE_SIMILARITY_THRESHOLD": 1.5},
        {"SUMMARY_SENTENCE_CUTOFF_RATIO": 0.0},
        {"WORKER_POOL_SIZE": 0},
        {"FANOUT_BATCH_SIZE": 0},
        {"STORAGE_BACKEND": "sqlite"},
    ],
)
def test_invalid_thresholds_raise(overrides):
    with pytest.raises(ValueError):
        CadenceSettings(**overrides)


def test_default_neo4j_password_warns(monkeypatch):
    warnings: list[str] = []

    def fake_warning(msg: str, **_kw: object) -> None:
        warnings.append(msg)

    monkeypatch.setattr(config.logger, "warning", fake_warning)
    CadenceSettings(STORAGE_BACKEND="neo4j", NEO4J_PASSWORD="cadence_password")
    assert any("NEO4J_PASSWORD" in msg for msg in warnings)


def test_memory_backend_does_not_warn_about_password(monkeypatch):
    warnings: list[str] = []
    monkeypatch.setattr(config.logger, "warning", lambda msg, **_kw: warnings.append(msg))
    CadenceSettings(STORAGE_BACKEND="memory", NEO4J_PASSWORD="cadence_password")
    assert warnings == []


def test_log_level_reads_alias(monkeypatch):
    monkeypatch.setenv("CADENCE_LOG_LEVEL", "DEBUG")
    assert CadenceSettings().LOG_LEVEL_STR == "DEBUG"
