from pathlib import Path

import pytest

from shared.config.config_loader import load_config, parse_config
from shared.config.schema import IndicatorConfig, MainConfig

ROOT = Path(__file__).resolve().parents[1]
CFG_PATH = ROOT / "config" / "config.yml"


def test_load_sample_config():
    assert CFG_PATH.exists(), "示例配置缺失"
    cfg = load_config(CFG_PATH, load_env=False)
    assert isinstance(cfg, MainConfig)
    assert cfg.ledger.initial_balance == 100_000
    assert cfg.ledger.fee_rate == 0.0
    assert cfg.indicators.sma_periods == [20, 50, 200]
    assert cfg.risk.var_confidence == 0.95


def test_load_config_expands_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    path = tmp_path / "cfg.yml"
    path.write_text("ledger:\n  store_path: ${TRADINGHUB_STATE_DIR}/ledger.sqlite3\n", encoding="utf-8")
    monkeypatch.setenv("TRADINGHUB_STATE_DIR", "/tmp/state")
    cfg = load_config(path, load_env=False)
    assert cfg.ledger.store_path == "/tmp/state/ledger.sqlite3"


def test_load_config_missing_env_raises(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    path = tmp_path / "cfg.yml"
    path.write_text("ledger:\n  store_path: ${TRADINGHUB_STATE_DIR}/ledger.sqlite3\n", encoding="utf-8")
    monkeypatch.delenv("TRADINGHUB_STATE_DIR", raising=False)
    with pytest.raises(ValueError) as exc:
        load_config(path, load_env=False)
    assert "Missing environment variable" in str(exc.value)


def test_dotenv_does_not_override_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    (tmp_path / ".env").write_text("TRADINGHUB_STATE_DIR=/from/dotenv\n", encoding="utf-8")
    path = tmp_path / "cfg.yml"
    path.write_text("ledger:\n  store_path: ${TRADINGHUB_STATE_DIR}/x.db\n", encoding="utf-8")
    monkeypatch.setenv("TRADINGHUB_STATE_DIR", "/from/env")
    assert load_config(path).ledger.store_path == "/from/env/x.db"


def test_unknown_keys_and_bad_ranges_are_rejected():
    with pytest.raises(ValueError) as exc:
        parse_config({"indicators": {"stochastic": True}})
    assert "indicators.stochastic" in str(exc.value)
    with pytest.raises(ValueError):
        parse_config({"indicators": {"macd_fast": 30, "macd_slow": 26}})
    with pytest.raises(ValueError):
        parse_config({"ledger": {"initial_balance": 0}})
    with pytest.raises(ValueError):
        parse_config({"risk": {"var_confidence": 1.2}})


def test_indicator_config_dedupes_periods():
    cfg = IndicatorConfig(sma_periods=[20, 20, 50])
    assert cfg.sma_periods == [20, 50]
    with pytest.raises(ValueError):
        IndicatorConfig(ema_periods=[0])


def test_missing_file_and_non_mapping_root(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yml")
    path = tmp_path / "list.yml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path, load_env=False)
