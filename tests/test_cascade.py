"""Tests for brain/cascade.py: provider fallback, templates and formatting."""

import random
from unittest.mock import MagicMock

import pytest

from hark.brain.cascade import CommandResult, ResponseCascade, format_response
from hark.personality import Persona

from conftest import StubProvider

JARVIS = Persona()
FRIDAY = Persona(name="Friday", honorific="boss", formal_titles=False)


# ── format_response ───────────────────────────────────────────────────


class TestFormatResponse:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("The lights are on", "The lights are on, sir."),
            ("The lights are on.", "The lights are on, sir."),
            ("Shall I continue?", "Shall I continue, sir?"),
            ("Done!", "Done, sir!"),
            ("Yes sir, the lights are on.", "Yes, the lights are on, sir."),
            ("Of course, Sir.", "Of course, sir."),
            ("sir, the door is open.", "The door is open, sir."),
            ("  lots   of   space  ", "lots of space, sir."),
            ("iPhone sales are up.", "iPhone sales are up, sir."),
        ],
    )
    def test_formal_persona(self, text, expected):
        assert format_response(text, JARVIS) == expected

    def test_single_honorific_after_formatting(self):
        formatted = format_response("Good day, sir. At your service, sir.", JARVIS)
        assert formatted.lower().count("sir") == 1

    def test_idempotent(self):
        once = format_response("Right away, sir.", JARVIS)
        assert format_response(once, JARVIS) == once

    def test_informal_persona_keeps_punctuated_text(self):
        assert format_response("On it.", FRIDAY) == "On it."

    def test_informal_persona_appends_when_unpunctuated(self):
        assert format_response("Sure thing", FRIDAY) == "Sure thing, boss."

    def test_only_honorific_falls_back(self):
        assert format_response("Sir.", JARVIS) == JARVIS.fallback_reply

    def test_does_not_touch_words_containing_honorific(self):
        assert format_response("Ask Sirius.", JARVIS) == "Ask Sirius, sir."


# ── provider fallback ─────────────────────────────────────────────────


class TestCascade:
    def test_first_success_wins(self):
        first = StubProvider("a", reply="First answer.")
        second = StubProvider("b", reply="Second answer.")
        result = ResponseCascade([first, second], persona=JARVIS).respond("what time is it")

        assert result == CommandResult("what time is it", 1.0, "First answer, sir.", "a")
        assert second.calls == []

    def test_failures_fall_through_to_last_provider(self):
        providers = [
            StubProvider("a", error=RuntimeError("timeout")),
            StubProvider("b", error=ValueError("bad payload")),
            StubProvider("c", reply="Ok"),
            StubProvider("d", reply="never"),
        ]
        result = ResponseCascade(providers, persona=JARVIS).respond("status report", confidence=0.7)

        assert result.provider == "c"
        assert result.response_text == "Ok, sir."
        assert result.confidence == 0.7
        assert [len(p.calls) for p in providers] == [1, 1, 1, 0]

    def test_empty_reply_counts_as_failure(self):
        providers = [StubProvider("a", reply="   "), StubProvider("b", reply=None), StubProvider("c", reply="Yes.")]
        result = ResponseCascade(providers, persona=JARVIS).respond("are you there")
        assert result.provider == "c"

    def test_all_failing_uses_template_and_never_raises(self):
        providers = [StubProvider("a", error=RuntimeError("x")), StubProvider("b", error=ConnectionError("y"))]
        result = ResponseCascade(providers, persona=JARVIS, rng=random.Random(1)).respond("launch the drone")

        assert result.provider is None
        assert result.response_text
        assert result.response_text.endswith("sir.")

    def test_blank_command_skips_providers(self):
        provider = StubProvider("a", reply="Hmm.")
        result = ResponseCascade([provider], persona=JARVIS).respond("   ")
        assert provider.calls == []
        assert result.provider is None
        assert result.command_text == ""
        assert result.response_text

    def test_no_providers(self):
        result = ResponseCascade([], persona=JARVIS).respond("thanks")
        assert result.response_text == "My pleasure, sir."

    def test_provider_names(self):
        cascade = ResponseCascade([StubProvider("groq"), StubProvider("claude")])
        assert cascade.provider_names == ["groq", "claude"]

    def test_close_releases_provider_clients(self):
        broken = MagicMock()
        broken.name = "groq"
        broken.close.side_effect = RuntimeError("already closed")
        http = MagicMock()
        http.name = "http"
        cascade = ResponseCascade([broken, StubProvider("no-client"), http])

        cascade.close()

        broken.close.assert_called_once_with()
        http.close.assert_called_once_with()


# ── templated answers ─────────────────────────────────────────────────


class TestTemplates:
    @pytest.fixture
    def cascade(self):
        return ResponseCascade([], persona=JARVIS, rng=random.Random(3))

    @pytest.mark.parametrize("command", ["hello there", "Hi", "hey you", "greetings"])
    def test_greeting(self, cascade, command):
        assert cascade.templated_response(command) in JARVIS.greetings

    @pytest.mark.parametrize("command", ["status", "how are you today"])
    def test_status(self, cascade, command):
        assert cascade.templated_response(command) == JARVIS.status_reply

    @pytest.mark.parametrize("command", ["thank you", "thanks a lot"])
    def test_thanks(self, cascade, command):
        assert cascade.templated_response(command) == JARVIS.thanks_reply

    def test_anything_else_is_confirmation(self, cascade):
        assert cascade.templated_response("deploy the site") in JARVIS.confirmations

    def test_word_boundaries(self, cascade):
        # "this" contains "hi", "statusbar" contains "status"
        assert cascade.templated_response("this statusbar") in JARVIS.confirmations

    def test_uses_persona_lines(self):
        persona = Persona(name="Friday", honorific="boss", formal_titles=False, thanks_reply="Anytime.")
        cascade = ResponseCascade([], persona=persona)
        assert cascade.respond("thanks").response_text == "Anytime."
