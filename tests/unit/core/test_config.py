"""Tests for exporter settings, the config store and YAML loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from hecship.core.config import (
    DELAY_STEP_SECONDS,
    MAX_DELAY_SECONDS,
    MIN_DELAY_SECONDS,
    SETTING_KEYS,
    ExporterSettings,
    MemoryConfigStore,
    load_settings,
    load_store,
)
from hecship.errors import ConfigurationIncomplete


class TestExporterSettingsDefaults:
    """Defaults match a freshly installed exporter."""

    def test_defaults(self) -> None:
        settings = ExporterSettings()
        assert settings.url == ""
        assert settings.hec_token == ""
        assert settings.index == ""
        assert settings.delay_seconds == 120
        assert settings.filter is None
        assert settings.autostart_global is False
        assert settings.autostart_project is False
        assert settings.request_timeout == 30.0
        assert settings.verify_tls is True

    def test_delay_bounds_are_multiples_of_step(self) -> None:
        assert MIN_DELAY_SECONDS % DELAY_STEP_SECONDS == 0
        assert MAX_DELAY_SECONDS >= MIN_DELAY_SECONDS

    def test_frozen(self) -> None:
        settings = ExporterSettings()
        with pytest.raises(ValidationError):
            settings.url = "http://elsewhere"  # type: ignore[misc]

    def test_token_not_in_repr(self) -> None:
        settings = ExporterSettings(hec_token="super-secret-token")
        assert "super-secret-token" not in repr(settings)


class TestExporterSettingsValidation:
    """Field validation and normalization."""

    @pytest.mark.parametrize("delay", [MIN_DELAY_SECONDS, 120, MAX_DELAY_SECONDS])
    def test_delay_in_range(self, delay: int) -> None:
        assert ExporterSettings(delay_seconds=delay).delay_seconds == delay

    @pytest.mark.parametrize("delay", [0, MIN_DELAY_SECONDS - 1, MAX_DELAY_SECONDS + 1, -10])
    def test_delay_out_of_range(self, delay: int) -> None:
        with pytest.raises(ValidationError):
            ExporterSettings(delay_seconds=delay)

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            ExporterSettings(request_timeout=0)

    def test_strings_stripped(self) -> None:
        settings = ExporterSettings(url="  http://h/services/collector ", hec_token=" T\n", index=" main ")
        assert settings.url == "http://h/services/collector"
        assert settings.hec_token == "T"
        assert settings.index == "main"

    def test_none_strings_become_empty(self) -> None:
        settings = ExporterSettings(url=None, hec_token=None, index=None)
        assert settings.url == ""
        assert settings.hec_token == ""
        assert settings.index == ""

    @pytest.mark.parametrize("text", ["", "   ", "\t\n"])
    def test_blank_filter_becomes_none(self, text: str) -> None:
        assert ExporterSettings(filter=text).filter is None

    def test_filter_stripped(self) -> None:
        assert ExporterSettings(filter="  record['x'] == 1 ").filter == "record['x'] == 1"


class TestCompleteness:
    """URL and token are required before anything can be sent."""

    def test_complete(self) -> None:
        settings = ExporterSettings(url="http://h", hec_token="T")
        assert settings.is_complete
        assert settings.missing_required() == ()
        settings.require_complete()

    def test_missing_both(self) -> None:
        settings = ExporterSettings()
        assert not settings.is_complete
        assert settings.missing_required() == ("url", "hec_token")

    def test_missing_token_raises(self) -> None:
        settings = ExporterSettings(url="http://h")
        with pytest.raises(ConfigurationIncomplete) as exc_info:
            settings.require_complete()
        assert exc_info.value.missing == ("hec_token",)

    def test_index_is_optional(self) -> None:
        assert ExporterSettings(url="http://h", hec_token="T", index="").is_complete


class TestMemoryConfigStore:
    """In-memory key/value store."""

    def test_missing_key_is_none(self) -> None:
        assert MemoryConfigStore().get_setting("splunk.url") is None

    def test_keys_case_insensitive(self) -> None:
        store = MemoryConfigStore({"SPLUNK.HECTOKEN": "T"})
        assert store.get_setting("splunk.hecToken") == "T"
        store.set_setting("Splunk.Index", "main")
        assert store.get_setting("splunk.index") == "main"

    def test_as_dict_is_copy(self) -> None:
        store = MemoryConfigStore({"a": 1})
        snapshot = store.as_dict()
        snapshot["a"] = 2
        assert store.get_setting("a") == 1


class TestStoreRoundTrip:
    """Settings persist through the store's dotted keys."""

    def test_to_store_then_from_store(self) -> None:
        original = ExporterSettings(
            url="http://h/services/collector",
            hec_token="T",
            index="web",
            delay_seconds=30,
            filter="record['hostname'] == 'a'",
            autostart_global=True,
            request_timeout=5.0,
            verify_tls=False,
        )
        store = MemoryConfigStore()
        original.to_store(store)
        assert store.get_setting("splunk.hecToken") == "T"
        assert store.get_setting("splunk.delaySeconds") == 30
        assert ExporterSettings.from_store(store) == original

    def test_from_store_uses_defaults_for_unset(self) -> None:
        store = MemoryConfigStore({"splunk.url": "http://h"})
        settings = ExporterSettings.from_store(store)
        assert settings.url == "http://h"
        assert settings.delay_seconds == 120

    def test_from_store_invalid_value(self) -> None:
        store = MemoryConfigStore({"splunk.delaySeconds": 5})
        with pytest.raises(ValidationError):
            ExporterSettings.from_store(store)

    def test_every_field_has_a_key(self) -> None:
        assert set(SETTING_KEYS) == set(ExporterSettings.model_fields)


class TestDisplayDict:
    """Display output masks the token."""

    def test_long_token_shows_last_four(self) -> None:
        display = ExporterSettings(hec_token="0123456789abcdef").to_display_dict()
        assert display["splunk.hecToken"] == "****cdef"

    def test_short_token_fully_masked(self) -> None:
        assert ExporterSettings(hec_token="T").to_display_dict()["splunk.hecToken"] == "****"

    def test_empty_token(self) -> None:
        assert ExporterSettings().to_display_dict()["splunk.hecToken"] == ""

    def test_uses_store_keys(self) -> None:
        display = ExporterSettings(delay_seconds=30).to_display_dict()
        assert display["splunk.delaySeconds"] == 30
        assert set(display) == set(SETTING_KEYS.values())


class TestLoadStore:
    """YAML loading through Dynaconf."""

    def test_load_yaml(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(
            "splunk:\n"
            "  url: http://h/services/collector\n"
            "  hecToken: T\n"
            "  index: main\n"
            "  delaySeconds: 30\n"
        )
        settings = load_settings(config_file)
        assert settings.url == "http://h/services/collector"
        assert settings.hec_token == "T"
        assert settings.index == "main"
        assert settings.delay_seconds == 30

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_store(tmp_path / "absent.yaml")

    def test_env_var_expansion(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TEST_HEC_TOKEN", "from-env")
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("splunk:\n  url: http://h\n  hecToken: ${TEST_HEC_TOKEN}\n")
        assert load_settings(config_file).hec_token == "from-env"

    def test_env_var_default(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("TEST_HEC_INDEX", raising=False)
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("splunk:\n  index: ${TEST_HEC_INDEX:-fallback}\n")
        assert load_settings(config_file).index == "fallback"

    def test_unset_env_var_kept_verbatim(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("TEST_HEC_UNSET", raising=False)
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("splunk:\n  hecToken: ${TEST_HEC_UNSET}\n")
        assert load_settings(config_file).hec_token == "${TEST_HEC_UNSET}"

    def test_prefixed_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HECSHIP_SPLUNK__index", "override")
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("splunk:\n  url: http://h\n  index: main\n")
        settings = load_settings(config_file)
        assert settings.index == "override"
        assert settings.url == "http://h"
