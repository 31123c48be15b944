"""Tests for main.py: CLI parsing and wiring."""

import json
import logging
import threading
from unittest.mock import MagicMock, patch

import pytest

from hark.main import Hark, build_parser, cli_overrides, configure_logging

from conftest import FakeBackend


class TestParser:
    def test_defaults_give_no_overrides(self):
        args = build_parser().parse_args([])
        assert cli_overrides(args) == {}
        assert args.backend in ("vosk", "speech_recognition")

    def test_overrides(self):
        args = build_parser().parse_args(
            ["--wake-word", "Friday", "-s", "high", "--language", "de-DE", "--timeout", "5", "-b", "speech_recognition"]
        )
        assert cli_overrides(args) == {
            "wake_word": "Friday",
            "sensitivity": "high",
            "language": "de-DE",
            "command_timeout_seconds": 5,
        }
        assert args.backend == "speech_recognition"

    def test_rejects_unknown_sensitivity(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--sensitivity", "extreme"])


def test_configure_logging_installs_thread_hook():
    original = threading.excepthook
    try:
        configure_logging(debug=True)
        assert threading.excepthook is not original
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        threading.excepthook = original


class TestHarkStartup:
    @pytest.fixture
    def wiring(self, tmp_path):
        backend = FakeBackend()
        with patch("hark.settings.ENGINE_CONFIG_FILE", str(tmp_path / "engine_config.json")), patch(
            "hark.brain.memory.COMMAND_MEMORY_FILE", str(tmp_path / "command_memory.json")
        ), patch("hark.brain.providers.create_response_providers", return_value=[]), patch(
            "hark.perception.recognition.create_recognition_backend", return_value=backend
        ) as factory, patch("hark.perception.tts.TTSEngine") as tts_cls:
            yield backend, factory, tts_cls, tmp_path

    def test_start_applies_and_persists_overrides(self, wiring):
        backend, factory, tts_cls, tmp_path = wiring
        app = Hark(build_parser().parse_args(["--wake-word", "Friday", "--timeout", "5", "--backend", "vosk"]))
        try:
            assert app.start()
            assert app.engine.get_status().active
            assert backend.start_calls[-1] == ("en-US", ["friday"])
            factory.assert_called_with("vosk")
            tts_cls.return_value.start.assert_called_once()
            tts_cls.return_value.speak_and_wait.assert_called_once()
            with open(tmp_path / "engine_config.json") as f:
                saved = json.load(f)
            assert saved["wakeWord"] == "friday"
            assert saved["commandTimeoutSeconds"] == 5
        finally:
            app.shutdown()
        assert not app.engine.get_status().active
        tts_cls.return_value.stop.assert_called_once()

    def test_auto_start_off_leaves_engine_idle(self, wiring):
        backend, _, tts_cls, tmp_path = wiring
        (tmp_path / "engine_config.json").write_text(json.dumps({"autoStart": False}))
        app = Hark(build_parser().parse_args([]))
        try:
            assert app.start()
            assert not app.engine.get_status().active
            assert backend.start_calls == []
            tts_cls.return_value.speak_and_wait.assert_not_called()
        finally:
            app.shutdown()

    def test_shutdown_closes_provider_clients(self, wiring):
        provider = MagicMock()
        provider.name = "http"
        with patch("hark.brain.providers.create_response_providers", return_value=[provider]):
            app = Hark(build_parser().parse_args([]))
            assert app.start()
        app.shutdown()
        provider.close.assert_called_once_with()

    def test_unknown_persona_fails(self, wiring):
        app = Hark(build_parser().parse_args(["--persona", "nobody"]))
        assert app.start() is False
        app.shutdown()
