import json
import pytest
from mathdash import config
from mathdash.engine.dates import DEFAULT_TIMEZONE
from mathdash.engine.levels import ConfigurationError, DEFAULT_LEVELS


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    for var in ("REFERENCE_TIMEZONE", "LEVEL_TABLE_PATH", "ALLOWED_ORIGINS", "CRON_SECRET", "PROGRESS_MAX_ATTEMPTS"):
        monkeypatch.delenv(var, raising=False)
    config.get_settings.cache_clear()
    config.get_level_table.cache_clear()
    yield
    config.get_settings.cache_clear()
    config.get_level_table.cache_clear()


class TestSettings:
    def test_defaults(self):
        s = config.get_settings()
        assert s.reference_timezone == DEFAULT_TIMEZONE
        assert s.level_table_path is None
        assert s.cron_secret is None
        assert s.progress_max_attempts == 5
        assert s.allowed_origins == ("http://localhost:3000",)

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("REFERENCE_TIMEZONE", "America/New_York")
        monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.example, https://b.example,")
        monkeypatch.setenv("CRON_SECRET", "s3cret")
        monkeypatch.setenv("PROGRESS_MAX_ATTEMPTS", "0")
        s = config.get_settings()
        assert s.reference_timezone == "America/New_York"
        assert s.allowed_origins == ("https://a.example", "https://b.example")
        assert s.cron_secret == "s3cret"
        assert s.progress_max_attempts == 1

    def test_cached(self):
        assert config.get_settings() is config.get_settings()


class TestLevelTable:
    def test_default_table(self):
        assert config.get_level_table() == DEFAULT_LEVELS

    def test_table_from_file(self, monkeypatch, tmp_path):
        path = tmp_path / "levels.json"
        path.write_text(json.dumps([
            {"level": 1, "title": "Rookie", "xp_required": 0},
            {"level": 2, "title": "Pro", "xp_required": 300},
        ]), encoding="utf-8")
        monkeypatch.setenv("LEVEL_TABLE_PATH", str(path))
        table = config.get_level_table()
        assert [d.title for d in table] == ["Rookie", "Pro"]

    def test_bad_table_is_fatal(self, monkeypatch, tmp_path):
        path = tmp_path / "levels.json"
        path.write_text("[]", encoding="utf-8")
        monkeypatch.setenv("LEVEL_TABLE_PATH", str(path))
        with pytest.raises(ConfigurationError):
            config.get_level_table()
