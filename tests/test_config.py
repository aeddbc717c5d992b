from config import Config, DEFAULT_USER_AGENT, get_logger


def test_defaults(monkeypatch):
    for var in ("TIER_LOW", "TIER_HIGH", "TIER_MAX", "INITIAL_TIER", "USER_AGENT",
                "STRICT_URL_RESERVATION", "FEED_SKIP_FIRST", "SECRETS_FILE"):
        monkeypatch.delenv(var, raising=False)

    cfg = Config()

    assert cfg.TIER_LIMITS == {"low": 3, "high": 10, "max": 25}
    assert cfg.INITIAL_TIER == "low"
    assert cfg.USER_AGENT == DEFAULT_USER_AGENT
    assert cfg.STRICT_URL_RESERVATION is True
    assert cfg.FEED_SKIP_FIRST == 0


def test_invalid_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.delenv("SECRETS_FILE", raising=False)
    monkeypatch.setenv("TIER_LOW", "zero")
    monkeypatch.setenv("TIER_HIGH", "0")
    monkeypatch.setenv("INITIAL_TIER", "orgia")
    monkeypatch.setenv("CONTROL_POLL_INTERVAL", "-1")

    cfg = Config()

    assert cfg.TIER_LIMITS["low"] == 3
    assert cfg.TIER_LIMITS["high"] == 10
    assert cfg.INITIAL_TIER == "low"
    assert cfg.CONTROL_POLL_INTERVAL == 0.1


def test_secrets_file_overrides_environment(monkeypatch, tmp_path):
    secrets = tmp_path / "secrets.yaml"
    secrets.write_text("environment:\n  TIER_MAX: 40\n  INITIAL_TIER: max\n", encoding="utf-8")
    monkeypatch.setenv("SECRETS_FILE", str(secrets))
    monkeypatch.setenv("TIER_MAX", "25")
    monkeypatch.setenv("INITIAL_TIER", "low")

    cfg = Config()

    assert cfg.TIER_LIMITS["max"] == 40
    assert cfg.INITIAL_TIER == "max"
    assert cfg.get_config_summary()["secrets_file_configured"] is True


def test_get_logger_namespace():
    assert get_logger("pipeline").name == "FeedIngest.pipeline"
