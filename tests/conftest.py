"""Shared fixtures: a scripted recognition backend and a manual clock.

The engine is exercised without audio hardware. FakeBackend emits whatever
transcripts a test scripts; ManualScheduler records timers and fires them
only when the test says so. Events still travel through the engine's real
queue and worker thread, so tests call harness.settle() after each step.
"""

import random
from concurrent.futures import ThreadPoolExecutor

import pytest

from hark.brain.cascade import ResponseCascade
from hark.perception.listener import ListeningEngine
from hark.perception.recognition import RecognitionBackend, RecognitionError, RecognitionEvent
from hark.personality import Persona
from hark.settings import EngineConfig


class FakeBackend(RecognitionBackend):
    """Recognition backend driven by the test."""

    name = "fake"

    def __init__(self, start_errors=None):
        super().__init__()
        self.start_errors = list(start_errors or [])  # raised by successive start() calls
        self.start_calls = []
        self.stop_calls = 0
        self.running = False

    def start(self, locale, hints):
        self.start_calls.append((locale, list(hints)))
        if self.start_errors:
            error = self.start_errors.pop(0)
            if error is not None:
                raise error
        self.running = True

    def stop(self):
        self.stop_calls += 1
        self.running = False

    def say(self, transcript, confidence=1.0, is_final=True):
        self._emit_result(RecognitionEvent(transcript, confidence, is_final))

    def fail(self, kind, message=""):
        self._emit_error(RecognitionError(kind, message))

    def end(self):
        self._emit_end()


class ManualTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose timers only fire when the test calls fire()."""

    def __init__(self):
        self.timers = []

    def call_later(self, delay, callback):
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire(self, timer):
        """Fire a timer even if cancelled: a real Timer can lose the race with cancel()."""
        timer.fired = True
        timer.callback()

    def fire_pending(self):
        for timer in self.pending:
            self.fire(timer)


class RecordingSpeaker:
    def __init__(self):
        self.spoken = []

    def speak(self, text):
        self.spoken.append(text)


class InMemoryConfigStore:
    def __init__(self, config=None):
        self.config = config or EngineConfig()
        self.saved = []

    def load(self):
        return self.config

    def save(self, config):
        self.config = config
        self.saved.append(config)


class InMemoryMemory:
    def __init__(self):
        self.entries = []

    def record(self, entry):
        self.entries.append(entry)


class StubProvider:
    """Response provider returning a canned reply or raising a canned error."""

    def __init__(self, name, reply=None, error=None):
        self.name = name
        self.reply = reply
        self.error = error
        self.calls = []

    def generate(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.reply


class EngineHarness:
    """Builds a ListeningEngine wired to fakes. Call build() once per test."""

    def __init__(self):
        self.scheduler = ManualScheduler()
        self.speaker = RecordingSpeaker()
        self.memory = InMemoryMemory()
        self.persona = Persona()
        self.providers = [StubProvider("primary", reply="It is sunny.")]
        self.backends = []
        self.backend_start_errors = []
        self.config_store = None
        self.engine = None
        self._executor = None

    @property
    def backend(self):
        return self.backends[-1]

    def _make_backend(self):
        backend = FakeBackend(start_errors=self.backend_start_errors)
        self.backends.append(backend)
        return backend

    def build(self, **config):
        self.config_store = InMemoryConfigStore(EngineConfig(**config))
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="test-dispatch")
        self.engine = ListeningEngine(
            config_store=self.config_store,
            backend_factory=self._make_backend,
            cascade=ResponseCascade(self.providers, persona=self.persona, rng=random.Random(7)),
            speaker=self.speaker,
            memory=self.memory,
            persona=self.persona,
            scheduler=self.scheduler,
            executor=self._executor,
            rng=random.Random(7),
        )
        return self.engine

    def settle(self):
        assert self.engine.wait_until_idle(timeout=5.0), "engine did not settle"

    def say(self, transcript, confidence=1.0, is_final=True):
        self.backend.say(transcript, confidence, is_final)
        self.settle()

    def fire(self, timer):
        self.scheduler.fire(timer)
        self.settle()

    def close(self):
        if self.engine is not None:
            self.engine.close()
            self._executor.shutdown(wait=True)


@pytest.fixture
def harness():
    h = EngineHarness()
    yield h
    h.close()
