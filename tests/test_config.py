"""Config validation."""

import pytest

from rapport.config import Config


@pytest.fixture
def sane_config(monkeypatch):
    monkeypatch.setattr(Config, "REPLY_DELAY_MIN_MS", 350)
    monkeypatch.setattr(Config, "REPLY_DELAY_MAX_MS", 750)
    monkeypatch.setattr(Config, "MAX_THREAD_EXCHANGES", 20)
    monkeypatch.setattr(Config, "TEXT_GENERATION_ENABLED", False)


def test_defaults_validate(sane_config):
    Config.validate()


def test_inverted_reply_delay_is_rejected(sane_config, monkeypatch):
    monkeypatch.setattr(Config, "REPLY_DELAY_MIN_MS", 900)
    with pytest.raises(ValueError, match="REPLY_DELAY"):
        Config.validate()


def test_thread_cap_must_be_positive(sane_config, monkeypatch):
    monkeypatch.setattr(Config, "MAX_THREAD_EXCHANGES", 0)
    with pytest.raises(ValueError, match="MAX_THREAD_EXCHANGES"):
        Config.validate()


@pytest.mark.parametrize(
    "provider, key_attr",
    [("openai", "OPENAI_API_KEY"), ("anthropic", "ANTHROPIC_API_KEY")],
)
def test_generation_needs_provider_key(sane_config, monkeypatch, provider, key_attr):
    monkeypatch.setattr(Config, "TEXT_GENERATION_ENABLED", True)
    monkeypatch.setattr(Config, "LLM_PROVIDER", provider)
    monkeypatch.setattr(Config, key_attr, None)

    with pytest.raises(ValueError, match=key_attr):
        Config.validate()

    monkeypatch.setattr(Config, key_attr, "sk-test")
    Config.validate()


def test_display_mentions_generation_state(sane_config):
    assert "Text generation: disabled" in Config.display()
