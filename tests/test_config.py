import pytest

import config


@pytest.fixture(autouse=True)
def fresh_settings():
    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()


def test_get_settings_reads_env(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_KEY", "secret")
    monkeypatch.setenv("GRID_SPACING_KM", "5")
    monkeypatch.setenv("RATE_LIMIT_DELAY", "0.5")
    monkeypatch.setenv("COST_CEILING", "100")
    monkeypatch.setenv("DEDUP_SCOPE", "Brand")
    monkeypatch.setenv("STREAM_RESULTS", "yes")
    monkeypatch.setenv("PORT", "8080")

    settings = config.get_settings()

    assert settings.supabase_url == "https://example.supabase.co"
    assert settings.grid_spacing_km == 5.0
    assert settings.inter_request_delay == 0.5
    assert settings.cost_ceiling == 100.0
    assert settings.dedup_scope == "brand"
    assert settings.stream_results is True
    assert settings.port == 8080


def test_get_settings_is_cached(monkeypatch):
    first = config.get_settings()
    monkeypatch.setenv("PORT", "9999")
    assert config.get_settings() is first


def test_unknown_choices_fall_back(monkeypatch, caplog):
    monkeypatch.setenv("DEDUP_SCOPE", "global")
    monkeypatch.setenv("SESSION_BACKEND", "redis")
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_KEY", raising=False)

    with caplog.at_level("WARNING"):
        settings = config.get_settings()

    assert settings.dedup_scope == "job"
    assert settings.session_backend == "supabase"
    messages = " ".join(caplog.messages)
    assert "Unknown DEDUP_SCOPE" in messages
    assert "SUPABASE_URL / SUPABASE_KEY not set" in messages


def test_defaults():
    settings = config.Settings()
    assert settings.cost_per_call == 0.017
    assert settings.cost_ceiling == 20000.0
    assert settings.max_retries == 3
    assert settings.search_radius_m == 5000
