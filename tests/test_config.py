import pytest

from market_structure.config import DEFAULT_TIMEFRAME_PARAMS, load_config


def test_defaults_without_file(monkeypatch):
    for key in ("LOG_LEVEL", "REST_TIMEOUT_S", "PROVIDER_CONCURRENCY", "DEFAULT_EXCHANGE"):
        monkeypatch.delenv(key, raising=False)
    cfg = load_config(None)
    assert cfg.request.default_exchange == "binance-futures"
    assert cfg.request.default_limit == 220
    assert cfg.analysis.max_levels == 10
    assert cfg.analysis.params_for("daily") == DEFAULT_TIMEFRAME_PARAMS["daily"]
    assert cfg.analysis.params_for("unknown") == DEFAULT_TIMEFRAME_PARAMS["intraday"]


def test_yaml_overrides(tmp_path, monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        "\n".join([
            "app:",
            "  log_level: DEBUG",
            "request:",
            "  default_symbol: ETHUSDT",
            "analysis:",
            "  max_levels: 8",
            "  rounding_steps:",
            "    - [100, 5]",
            "    - [1, 0.1]",
            "  timeframes:",
            "    daily: {swing_radius: 5}",
        ]),
        encoding="utf-8",
    )
    cfg = load_config(str(path))
    assert cfg.app.log_level == "DEBUG"
    assert cfg.request.default_symbol == "ETHUSDT"
    assert cfg.analysis.max_levels == 8
    assert cfg.analysis.rounding_steps == ((100.0, 5.0), (1.0, 0.1))
    daily = cfg.analysis.params_for("daily")
    assert daily.swing_radius == 5
    assert daily.recent_swings == DEFAULT_TIMEFRAME_PARAMS["daily"].recent_swings


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("REST_TIMEOUT_S", "7")
    monkeypatch.setenv("PROVIDER_CONCURRENCY", "not-a-number")
    monkeypatch.setenv("DEFAULT_EXCHANGE", "stooq")
    cfg = load_config(None)
    assert cfg.app.log_level == "WARNING"
    assert cfg.provider.rest_timeout_s == 7
    assert cfg.provider.concurrency == 5
    assert cfg.request.default_exchange == "stooq"


def test_invalid_limit_bounds(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("request:\n  min_limit: 500\n  max_limit: 100\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(str(path))


def test_empty_yaml_sections_use_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("REST_TIMEOUT_S", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text("app:\nprovider:\nrequest:\n  default_symbol: ETHUSDT\nanalysis:\n", encoding="utf-8")
    cfg = load_config(str(path))
    assert cfg.provider.rest_timeout_s == 20
    assert cfg.request.default_symbol == "ETHUSDT"
    assert cfg.analysis.max_levels == 10
