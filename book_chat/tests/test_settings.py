import pydantic
import pytest

from book_chat.config.settings import Settings


def test_settings_reads_config_yaml(monkeypatch, tmp_path):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("retention_days: 7\ngemini_model: gemini-2.5-pro\n", encoding="utf-8")
    monkeypatch.setenv("BOOK_CHAT_CONFIG_FILE", str(cfg))
    monkeypatch.delenv("RETENTION_DAYS", raising=False)
    monkeypatch.delenv("GEMINI_MODEL", raising=False)

    s = Settings()
    assert s.retention_days == 7
    assert s.gemini_model == "gemini-2.5-pro"


def test_env_overrides_yaml(monkeypatch, tmp_path):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("default_provider: gemini\n", encoding="utf-8")
    monkeypatch.setenv("BOOK_CHAT_CONFIG_FILE", str(cfg))
    monkeypatch.setenv("DEFAULT_PROVIDER", "openai")
    assert Settings().default_provider == "openai"


def test_short_api_key_rejected():
    with pytest.raises(pydantic.ValidationError):
        Settings(gemini_api_key="short")


def test_blank_api_key_means_not_configured():
    assert Settings(gemini_api_key="   ").gemini_api_key is None
