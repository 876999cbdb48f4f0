import tempfile
from pathlib import Path

from chat_core.config.settings import ChatSettings


def test_yaml_config_is_loaded(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        path = Path(d) / "config.yaml"
        path.write_text("openai_model: gpt-4o-mini\ntitle_max_chars: 12\ndefault_provider: openai\n", encoding="utf-8")
        monkeypatch.setenv("CHAT_CONFIG_FILE", str(path))
        monkeypatch.delenv("OPENAI_MODEL", raising=False)

        cfg = ChatSettings()

        assert cfg.openai_model == "gpt-4o-mini"
        assert cfg.title_max_chars == 12
        assert cfg.default_provider == "openai"
        assert cfg.gemini_model == "gemini-2.5-flash"


def test_env_overrides_yaml(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        path = Path(d) / "config.yaml"
        path.write_text("openai_model: from-yaml\n", encoding="utf-8")
        monkeypatch.setenv("CHAT_CONFIG_FILE", str(path))
        monkeypatch.setenv("OPENAI_MODEL", "from-env")
        assert ChatSettings().openai_model == "from-env"


def test_blank_api_key_is_none(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "   ")
    assert ChatSettings().gemini_api_key is None
