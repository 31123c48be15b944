"""Always-listening engine: wake-word gating, command capture, backend auto-restart.

States:
    Idle                 - no session (self._state is None)
    Listening.Gated      - session active, phase IDLE, waiting for the wake word
    Listening.Capturing  - session active, phase AWAITING_COMMAND, countdown running

Threading model: recognition callbacks, timers and restarts never touch state
directly. They enqueue (kind, token, payload) on one queue, drained by a
single worker thread that applies each event while holding the engine lock.
start()/stop()/update_config() take the same lock. Every event carries the
session token it was created for; stop() bumps the token, so anything
scheduled by an old session is dropped when it arrives.

Commands run on a thread pool (cascade call, speech, memory) so a slow
provider never stalls recognition or a restart.
"""

import logging
import random
import threading
import time
from concurrent import futures
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from queue import Queue
from typing import Callable, Optional, Protocol

from hark.brain.cascade import CommandResult
from hark.brain.memory import MemoryStore, build_memory_entry
from hark.config import (
    DISPATCH_WORKERS,
    ERROR_RESTART_DELAY_SECONDS,
    RESTART_DELAY_SECONDS,
    RESTART_MAX_ATTEMPTS,
    RESTART_MAX_DELAY_SECONDS,
)
from hark.errors import BackendUnavailable, HarkError, PermissionDenied, TransientRecognitionError
from hark.perception import wake_word
from hark.perception.recognition import RecognitionBackend, RecognitionError, RecognitionEvent
from hark.personality import Persona
from hark.settings import ConfigStore, EngineConfig
from hark.utils.scheduling import Scheduler, ThreadingScheduler, TimerHandle

logger = logging.getLogger("hark.listener")

_RESULT = "result"
_ERROR = "error"
_END = "end"
_TIMEOUT = "timeout"
_RESTART = "restart"


class ActivationPhase(Enum):
    IDLE = "idle"  # waiting for the wake word
    AWAITING_COMMAND = "awaiting_command"  # wake word heard, capture window open


@dataclass
class EngineState:
    """Mutable per-session record. Only touched by the engine under its lock."""

    token: int
    backend: RecognitionBackend
    phase: ActivationPhase = ActivationPhase.IDLE
    timeout_handle: Optional[TimerHandle] = None
    restart_handle: Optional[TimerHandle] = None
    capture_id: int = 0
    restart_failures: int = 0


@dataclass(frozen=True)
class EngineStatus:
    active: bool
    capturing: bool
    config: EngineConfig
    last_error: Optional[str] = None
    restart_failures: int = 0


class Speaker(Protocol):
    def speak(self, text: str) -> None:
        """Fire-and-forget speech."""
        ...


class Responder(Protocol):
    def respond(self, command_text: str, confidence: float = 1.0) -> CommandResult:
        ...


class ListeningEngine:
    """Owns one listening session at a time. Construct once at the composition root."""

    def __init__(
        self,
        config_store: ConfigStore,
        backend_factory: Callable[[], RecognitionBackend],
        cascade: Responder,
        speaker: Speaker,
        memory: Optional[MemoryStore] = None,
        persona: Optional[Persona] = None,
        scheduler: Optional[Scheduler] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        rng: Optional[random.Random] = None,
        restart_delay: float = RESTART_DELAY_SECONDS,
        error_restart_delay: float = ERROR_RESTART_DELAY_SECONDS,
        max_restart_delay: float = RESTART_MAX_DELAY_SECONDS,
        max_restart_attempts: int = RESTART_MAX_ATTEMPTS,
    ):
        self._config_store = config_store
        self._config = config_store.load()
        self._backend_factory = backend_factory
        self._cascade = cascade
        self._speaker = speaker
        self._memory = memory
        self._persona = persona or Persona()
        self._scheduler = scheduler or ThreadingScheduler()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=DISPATCH_WORKERS, thread_name_prefix="hark-dispatch"
        )
        self._rng = rng or random.Random()

        self._restart_delay = restart_delay
        self._error_restart_delay = error_restart_delay
        self._max_restart_delay = max_restart_delay
        self._max_restart_attempts = max_restart_attempts

        self._lock = threading.RLock()
        self._events: Queue = Queue()
        self._worker: Optional[threading.Thread] = None
        self._state: Optional[EngineState] = None
        self._generation = 0
        self._last_error: Optional[str] = None
        self._restart_failures = 0
        self._closed = False

        self._inflight: set[Future] = set()
        self._inflight_lock = threading.Lock()

    # ── Public surface ────────────────────────────────────────────────

    @property
    def config(self) -> EngineConfig:
        with self._lock:
            return self._config

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._state is not None

    def start(self) -> bool:
        """Start listening. Returns False if disabled in config, True once listening.

        Raises PermissionDenied / BackendUnavailable if the backend cannot start;
        the engine stays Idle in that case.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("ListeningEngine is closed")
            config = self._config
            if not config.enabled:
                logger.info("Always-listening is disabled in config")
                return False
            if self._state is not None:
                logger.info("Always-listening already active")
                return True

            self._ensure_worker()
            self._generation += 1
            token = self._generation

            backend = self._backend_factory()
            backend.on_result(lambda event: self._post(_RESULT, token, event))
            backend.on_error(lambda error: self._post(_ERROR, token, error))
            backend.on_end(lambda: self._post(_END, token))

            try:
                backend.start(config.language, [config.wake_word])
            except HarkError as e:
                self._fail_start(backend, e)
                raise
            except Exception as e:
                error = BackendUnavailable(f"Recognition backend failed to start: {e}")
                self._fail_start(backend, error)
                raise error from e

            self._state = EngineState(token=token, backend=backend)
            self._last_error = None
            self._restart_failures = 0
            logger.info(
                "Always-listening started (wake word %r, sensitivity %s >= %.2f, timeout %ds, %s)",
                config.wake_word,
                config.sensitivity,
                config.confidence_threshold,
                config.command_timeout_seconds,
                backend.name,
            )
            return True

    def stop(self) -> None:
        """Stop listening. Idempotent; safe from any state, including mid-command."""
        with self._lock:
            state = self._state
            if state is None:
                return
            self._end_session(state)
            logger.info("Always-listening stopped")

    def update_config(self, patch: dict) -> EngineConfig:
        """Merge patch into the config, persist it, and restart the session if one is running."""
        with self._lock:
            new_config = self._config.merged(patch)
            self._config_store.save(new_config)
            was_active = self._state is not None
            if was_active:
                self.stop()
            self._config = new_config
            logger.info("Config updated: %s", ", ".join(f"{k}={v!r}" for k, v in patch.items()))
            if was_active and new_config.enabled:
                self.start()
            return new_config

    def get_status(self) -> EngineStatus:
        with self._lock:
            state = self._state
            return EngineStatus(
                active=state is not None,
                capturing=state is not None and state.phase is ActivationPhase.AWAITING_COMMAND,
                config=self._config,
                last_error=self._last_error,
                restart_failures=self._restart_failures,
            )

    def wait_until_idle(self, timeout: float = 5.0) -> bool:
        """Block until queued events are handled and dispatched commands finished."""
        deadline = time.monotonic() + timeout
        while True:
            with self._inflight_lock:
                pending = [f for f in self._inflight if not f.done()]
            if self._events.unfinished_tasks == 0 and not pending:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            if pending:
                futures.wait(pending, timeout=min(0.05, remaining))
            else:
                time.sleep(min(0.01, remaining))

    def close(self) -> None:
        """Stop, then shut down the event worker and dispatch pool."""
        self.stop()
        with self._lock:
            self._closed = True
            worker, self._worker = self._worker, None
        if worker is not None:
            self._events.put(None)
            if worker is not threading.current_thread():
                worker.join(timeout=2)
        self._executor.shutdown(wait=False)

    # ── Event plumbing ────────────────────────────────────────────────

    def _post(self, kind: str, token: int, payload=None) -> None:
        self._events.put((kind, token, payload))

    def _ensure_worker(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker = threading.Thread(target=self._run_events, daemon=True, name="hark-listener")
        self._worker.start()

    def _run_events(self) -> None:
        while True:
            item = self._events.get()
            try:
                if item is None:
                    return
                kind, token, payload = item
                with self._lock:
                    self._handle(kind, token, payload)
            except Exception:
                logger.exception("Error handling %s event", item[0] if item else "?")
            finally:
                self._events.task_done()

    def _handle(self, kind: str, token: int, payload) -> None:
        state = self._state
        if state is None or state.token != token:
            logger.debug("Dropping stale %s event (session %d)", kind, token)
            return

        if kind == _RESULT:
            self._on_result(state, payload)
        elif kind == _TIMEOUT:
            self._on_timeout(state, payload)
        elif kind == _END:
            self._schedule_restart(state, self._restart_delay, "session ended")
        elif kind == _ERROR:
            self._on_error(state, payload)
        elif kind == _RESTART:
            self._on_restart(state)
        else:
            logger.warning("Unknown engine event %r", kind)

    # ── Recognition results ───────────────────────────────────────────

    def _on_result(self, state: EngineState, event: RecognitionEvent) -> None:
        config = self._config

        if state.phase is ActivationPhase.IDLE:
            if not wake_word.match(event.transcript, config.wake_word):
                return
            threshold = config.confidence_threshold
            if event.confidence < threshold:
                logger.info(
                    "Wake word in %r but confidence %.2f < %.2f, ignoring",
                    event.transcript,
                    event.confidence,
                    threshold,
                )
                return

            logger.info("Wake word detected: %r (confidence %.2f)", event.transcript, event.confidence)
            self._speak(self._persona.acknowledgement(self._rng))
            self._open_capture_window(state, config)

            remainder = wake_word.strip_wake_word(event.transcript, config.wake_word)
            if remainder and event.is_final:
                self._capture_command(state, remainder, event.confidence)
            return

        # Capturing: only a final result closes the window
        if not event.is_final:
            return
        command = wake_word.strip_wake_word(event.transcript, config.wake_word)
        if not command:
            logger.debug("Final result %r holds no command, still waiting", event.transcript)
            return
        self._capture_command(state, command, event.confidence)

    def _open_capture_window(self, state: EngineState, config: EngineConfig) -> None:
        self._cancel_timeout(state)
        state.capture_id += 1
        state.phase = ActivationPhase.AWAITING_COMMAND
        token, capture_id = state.token, state.capture_id
        state.timeout_handle = self._scheduler.call_later(
            config.command_timeout_seconds,
            lambda: self._post(_TIMEOUT, token, capture_id),
        )

    def _on_timeout(self, state: EngineState, capture_id: int) -> None:
        if state.phase is not ActivationPhase.AWAITING_COMMAND or capture_id != state.capture_id:
            return
        state.phase = ActivationPhase.IDLE
        state.timeout_handle = None
        logger.info("Command timeout reached, listening for wake word again")

    def _capture_command(self, state: EngineState, command: str, confidence: float) -> None:
        self._cancel_timeout(state)
        state.phase = ActivationPhase.IDLE
        logger.info("Command captured: %r", command)
        self._dispatch(state.token, command, confidence)

    # ── Command dispatch (off the event thread) ───────────────────────

    def _dispatch(self, token: int, command: str, confidence: float) -> None:
        future = self._executor.submit(self._run_command, token, command, confidence)
        with self._inflight_lock:
            self._inflight.add(future)
        future.add_done_callback(self._discard_inflight)

    def _discard_inflight(self, future: Future) -> None:
        with self._inflight_lock:
            self._inflight.discard(future)
        error = future.exception() if not future.cancelled() else None
        if error is not None:
            logger.error("Command dispatch failed: %s", error)

    def _run_command(self, token: int, command: str, confidence: float) -> None:
        result = self._cascade.respond(command, confidence=confidence)
        if not self._is_live(token):
            logger.info("Listening stopped while answering %r, discarding response", command)
            return
        self._speak(result.response_text)
        self._record(result)

    def _is_live(self, token: int) -> bool:
        with self._lock:
            return self._state is not None and self._state.token == token

    def _speak(self, text: str) -> None:
        try:
            self._speaker.speak(text)
        except Exception as e:
            logger.warning("Speaker failed: %s", e)

    def _record(self, result: CommandResult) -> None:
        if self._memory is None:
            return
        try:
            self._memory.record(build_memory_entry(result))
        except Exception as e:
            logger.warning("Failed to record command in memory: %s", e)

    # ── Backend lifecycle ─────────────────────────────────────────────

    def _on_error(self, state: EngineState, error: RecognitionError) -> None:
        if error.transient:
            logger.info("Recovering from %r", TransientRecognitionError(error.kind, error.message))
            self._schedule_restart(state, self._error_restart_delay, f"transient error ({error.kind})")
            return
        exc_cls = PermissionDenied if error.permission else BackendUnavailable
        self._last_error = f"{exc_cls.__name__}: {error.kind} {error.message}".strip()
        logger.error("Recognition failed (%s: %s), stopping", error.kind, error.message)
        self._end_session(state)

    def _schedule_restart(self, state: EngineState, delay: float, reason: str) -> None:
        if state.restart_handle is not None:
            logger.debug("Restart already pending (%s)", reason)
            return
        token = state.token
        logger.info("Recognition %s, restarting in %.1fs", reason, delay)
        state.restart_handle = self._scheduler.call_later(delay, lambda: self._post(_RESTART, token))

    def _on_restart(self, state: EngineState) -> None:
        state.restart_handle = None
        config = self._config
        self._stop_backend(state.backend)
        try:
            state.backend.start(config.language, [config.wake_word])
        except PermissionDenied as e:
            self._last_error = f"PermissionDenied: {e}"
            logger.error("Microphone permission lost during restart: %s", e)
            self._end_session(state)
            return
        except Exception as e:
            state.restart_failures += 1
            self._restart_failures = state.restart_failures
            self._last_error = f"BackendUnavailable: {e}"
            if state.restart_failures >= self._max_restart_attempts:
                logger.error(
                    "Recognition restart failed %d times, giving up: %s", state.restart_failures, e
                )
                self._end_session(state)
                return
            delay = min(self._max_restart_delay, self._error_restart_delay * 2 ** (state.restart_failures - 1))
            logger.warning(
                "Recognition restart failed (%d/%d): %s",
                state.restart_failures,
                self._max_restart_attempts,
                e,
            )
            self._schedule_restart(state, delay, "restart failed")
            return

        if state.restart_failures:
            logger.info("Recognition recovered after %d failed restarts", state.restart_failures)
        state.restart_failures = 0
        self._restart_failures = 0
        self._last_error = None
        logger.debug("Recognition restarted")

    def _end_session(self, state: EngineState) -> None:
        """Tear the session down to Idle. Invalidates every timer and dispatch of that session."""
        self._state = None
        self._generation += 1
        self._cancel_timeout(state)
        if state.restart_handle is not None:
            state.restart_handle.cancel()
            state.restart_handle = None
        state.phase = ActivationPhase.IDLE
        self._stop_backend(state.backend)

    def _fail_start(self, backend: RecognitionBackend, error: Exception) -> None:
        self._last_error = f"{type(error).__name__}: {error}"
        logger.error("Failed to start always-listening: %s", error)
        self._stop_backend(backend)

    @staticmethod
    def _cancel_timeout(state: EngineState) -> None:
        if state.timeout_handle is not None:
            state.timeout_handle.cancel()
            state.timeout_handle = None

    @staticmethod
    def _stop_backend(backend: RecognitionBackend) -> None:
        try:
            backend.stop()
        except Exception as e:
            logger.warning("Error stopping recognition backend: %s", e)
