"""Tests for settings.py: EngineConfig validation and JSON persistence."""

import dataclasses
import json
import os

import pytest

from hark.errors import ConfigError
from hark.settings import EngineConfig, JsonConfigStore, normalize_patch


class TestEngineConfig:
    def test_defaults(self):
        config = EngineConfig()
        assert config.enabled is True
        assert config.wake_word == "jarvis"
        assert config.auto_start is True
        assert config.sensitivity == "medium"
        assert config.language == "en-US"
        assert config.command_timeout_seconds == 10
        assert config.confidence_threshold == 0.6

    def test_wake_word_normalised(self):
        assert EngineConfig(wake_word="  Friday ").wake_word == "friday"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"wake_word": ""},
            {"wake_word": "   "},
            {"sensitivity": "extreme"},
            {"command_timeout_seconds": 0},
            {"command_timeout_seconds": -5},
            {"command_timeout_seconds": 2.5},
            {"command_timeout_seconds": True},
            {"language": ""},
            {"language": None},
            {"wake_word": 7},
            {"enabled": "yes"},
            {"auto_start": 1},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigError):
            EngineConfig(**kwargs)

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            EngineConfig(sensitivity="loud")

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            EngineConfig().wake_word = "computer"

    @pytest.mark.parametrize("sensitivity, threshold", [("high", 0.5), ("medium", 0.6), ("low", 0.7)])
    def test_thresholds(self, sensitivity, threshold):
        assert EngineConfig(sensitivity=sensitivity).confidence_threshold == threshold

    def test_merged_returns_new_instance(self):
        original = EngineConfig()
        updated = original.merged({"sensitivity": "high", "wakeWord": "Computer"})
        assert updated.sensitivity == "high"
        assert updated.wake_word == "computer"
        assert original.sensitivity == "medium"

    def test_merged_validates(self):
        with pytest.raises(ConfigError):
            EngineConfig().merged({"command_timeout_seconds": 0})

    def test_to_dict_uses_camel_case(self):
        assert EngineConfig().to_dict() == {
            "enabled": True,
            "wakeWord": "jarvis",
            "autoStart": True,
            "sensitivity": "medium",
            "language": "en-US",
            "commandTimeoutSeconds": 10,
        }

    def test_from_dict_accepts_legacy_timeout_key(self):
        config = EngineConfig.from_dict({"commandTimeout": 15, "autoStart": False})
        assert config.command_timeout_seconds == 15
        assert config.auto_start is False

    def test_from_dict_fills_missing_keys(self):
        config = EngineConfig.from_dict({"sensitivity": "low"})
        assert config.wake_word == "jarvis"
        assert config.sensitivity == "low"


class TestNormalizePatch:
    def test_mixed_key_styles(self):
        assert normalize_patch({"wakeWord": "x", "language": "de-DE", "command_timeout_seconds": 4}) == {
            "wake_word": "x",
            "language": "de-DE",
            "command_timeout_seconds": 4,
        }

    def test_unknown_key(self):
        with pytest.raises(ConfigError, match="volume"):
            normalize_patch({"volume": 3})


class TestJsonConfigStore:
    def test_missing_file_gives_defaults(self, tmp_path):
        store = JsonConfigStore(str(tmp_path / "engine_config.json"))
        assert store.load() == EngineConfig()

    def test_save_then_load(self, tmp_path):
        path = tmp_path / "engine_config.json"
        config = EngineConfig(wake_word="friday", sensitivity="high", command_timeout_seconds=12)
        JsonConfigStore(str(path)).save(config)

        assert JsonConfigStore(str(path)).load() == config
        with open(path) as f:
            assert json.load(f)["wakeWord"] == "friday"

    def test_loads_legacy_file(self, tmp_path):
        path = tmp_path / "engine_config.json"
        path.write_text(json.dumps({"wakeWord": "computer", "commandTimeout": 20}))
        config = JsonConfigStore(str(path)).load()
        assert config.wake_word == "computer"
        assert config.command_timeout_seconds == 20

    def test_unknown_keys_are_ignored(self, tmp_path, caplog):
        path = tmp_path / "engine_config.json"
        path.write_text(json.dumps({"wakeWord": "friday", "sensitivity": "high", "extra": 1}))
        config = JsonConfigStore(str(path)).load()
        assert config.wake_word == "friday"
        assert config.sensitivity == "high"
        assert "extra" in caplog.text

    def test_invalid_value_only_drops_that_key(self, tmp_path):
        path = tmp_path / "engine_config.json"
        path.write_text(json.dumps({"sensitivity": "extreme", "wakeWord": "friday", "autoStart": "yes"}))
        config = JsonConfigStore(str(path)).load()
        assert config == EngineConfig(wake_word="friday")

    def test_non_object_file_gives_defaults(self, tmp_path):
        path = tmp_path / "engine_config.json"
        path.write_text("[1, 2, 3]")
        assert JsonConfigStore(str(path)).load() == EngineConfig()

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "engine_config.json"
        path.write_text("{not json")
        assert JsonConfigStore(str(path)).load() == EngineConfig()

    def test_save_is_atomic_and_creates_directories(self, tmp_path):
        path = tmp_path / "hark_data" / "engine_config.json"
        store = JsonConfigStore(str(path))
        store.save(EngineConfig(language="de-DE"))
        store.save(EngineConfig(language="fr-FR"))
        assert os.listdir(path.parent) == ["engine_config.json"]
        assert store.load().language == "fr-FR"

    def test_update_patch_still_rejects_unknown_keys(self):
        with pytest.raises(ConfigError):
            EngineConfig().merged({"wakeWord": "friday", "extra": 1})
