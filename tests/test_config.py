"""Tests for environment-driven simulation settings."""

from crypto_credit_risk.config import DEFAULT_NUM_TRIALS, DEFAULT_SEED, SimulationConfig


def test_defaults(monkeypatch):
    for key in ("NUM_TRIALS", "HORIZON_DAYS", "SEED", "MAX_WORKERS", "LOG_LEVEL"):
        monkeypatch.delenv(f"CRYPTO_RISK_{key}", raising=False)
    config = SimulationConfig.from_env()
    assert config.num_trials == DEFAULT_NUM_TRIALS
    assert config.seed == DEFAULT_SEED
    assert config.max_workers == 1
    assert config.log_level == "INFO"


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CRYPTO_RISK_NUM_TRIALS", "10000")
    monkeypatch.setenv("CRYPTO_RISK_HORIZON_DAYS", "90")
    monkeypatch.setenv("CRYPTO_RISK_MAX_WORKERS", "4")
    monkeypatch.setenv("CRYPTO_RISK_LOG_LEVEL", "debug")
    config = SimulationConfig.from_env()
    assert config.num_trials == 10_000
    assert config.horizon_days == 90
    assert config.max_workers == 4
    assert config.log_level == "DEBUG"


def test_negative_seed_means_unseeded(monkeypatch):
    monkeypatch.setenv("CRYPTO_RISK_SEED", "-1")
    assert SimulationConfig.from_env().seed is None


def test_malformed_values_fall_back(monkeypatch, caplog):
    monkeypatch.setenv("CRYPTO_RISK_NUM_TRIALS", "lots")
    monkeypatch.setenv("CRYPTO_RISK_MAX_WORKERS", "0")
    config = SimulationConfig.from_env()
    assert config.num_trials == DEFAULT_NUM_TRIALS
    assert config.max_workers == 1
    assert "CRYPTO_RISK_NUM_TRIALS" in caplog.text
