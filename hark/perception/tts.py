"""Speech output: ElevenLabs primary with offline pyttsx3 fallback.

TTSEngine is the engine's Speaker. speak() only enqueues; a single worker
thread owns both backends (pyttsx3 must be initialised and used on the same
thread) and plays utterances in order.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from queue import Empty, Queue
from typing import Optional

import numpy as np

from hark.config import (
    ELEVENLABS_API_KEY,
    ELEVENLABS_MODEL,
    ELEVENLABS_OUTPUT_FORMAT,
    ELEVENLABS_SAMPLE_RATE,
    ELEVENLABS_VOICE_ID,
    TTS_RATE,
    TTS_VOLUME,
)

logger = logging.getLogger("hark.tts")


class TTSBackend(ABC):
    """Abstract interface for a TTS backend."""

    name = "tts"

    @abstractmethod
    def initialize(self) -> bool:
        ...

    @abstractmethod
    def synthesize_and_play(self, text: str) -> None:
        ...

    @abstractmethod
    def shutdown(self) -> None:
        ...


class ElevenLabsBackend(TTSBackend):
    """ElevenLabs TTS, raw PCM buffered then played through sounddevice."""

    name = "elevenlabs"

    def __init__(self, api_key: str = None, voice_id: str = ELEVENLABS_VOICE_ID, model_id: str = ELEVENLABS_MODEL):
        self._api_key = api_key if api_key is not None else ELEVENLABS_API_KEY
        self._voice_id = voice_id
        self._model_id = model_id
        self._client = None

    def initialize(self) -> bool:
        if not self._api_key:
            logger.info("ELEVENLABS_API_KEY not set")
            return False
        try:
            from elevenlabs.client import ElevenLabs

            self._client = ElevenLabs(api_key=self._api_key)
            logger.info("ElevenLabs backend initialized (voice=%s, model=%s)", self._voice_id, self._model_id)
            return True
        except ImportError:
            logger.info("elevenlabs package not installed")
            return False
        except Exception as e:
            logger.error("ElevenLabs initialization failed: %s", e)
            return False

    def synthesize_and_play(self, text: str) -> None:
        import sounddevice as sd

        audio_stream = self._client.text_to_speech.convert(
            text=text,
            voice_id=self._voice_id,
            model_id=self._model_id,
            output_format=ELEVENLABS_OUTPUT_FORMAT,
        )
        samples = pcm16_to_float(b"".join(chunk for chunk in audio_stream if isinstance(chunk, bytes)))
        if samples.size == 0:
            raise RuntimeError("No audio data received from ElevenLabs")
        sd.play(samples, samplerate=ELEVENLABS_SAMPLE_RATE)
        sd.wait()

    def shutdown(self) -> None:
        self._client = None


class Pyttsx3Backend(TTSBackend):
    """Offline pyttsx3 TTS backend (fallback)."""

    name = "pyttsx3"

    def __init__(self, rate: int = TTS_RATE, volume: float = TTS_VOLUME):
        self._rate = rate
        self._volume = volume
        self._engine = None

    def initialize(self) -> bool:
        try:
            import pyttsx3

            self._engine = pyttsx3.init()
            self._engine.setProperty("rate", self._rate)
            self._engine.setProperty("volume", self._volume)
            logger.info("pyttsx3 fallback backend initialized")
            return True
        except Exception as e:
            logger.error("pyttsx3 initialization failed: %s", e)
            return False

    def synthesize_and_play(self, text: str) -> None:
        if self._engine is None:
            return
        self._engine.say(text)
        self._engine.runAndWait()

    def shutdown(self) -> None:
        self._engine = None


def pcm16_to_float(pcm: bytes) -> np.ndarray:
    """Signed 16-bit little-endian PCM -> float32 in [-1, 1)."""
    usable = len(pcm) - (len(pcm) % 2)
    return np.frombuffer(pcm[:usable], dtype="<i2").astype(np.float32) / 32768.0


class TTSEngine:
    """Queued speech with primary/fallback backends.

    Public interface:
      - start() -> bool
      - speak(text) -> None                      (non-blocking, queued)
      - speak_and_wait(text, timeout) -> bool    (blocks until played)
      - stop() -> None
    """

    def __init__(
        self,
        primary: Optional[TTSBackend] = None,
        fallback: Optional[TTSBackend] = None,
        max_consecutive_failures: int = 3,
    ):
        self._queue: Queue = Queue()
        self._thread: Optional[threading.Thread] = None
        self._running = False

        # Default backends are built on the worker thread
        self._use_defaults = primary is None and fallback is None
        self._primary = primary
        self._fallback = fallback
        self._consecutive_primary_failures = 0
        self._max_consecutive_failures = max_consecutive_failures

    def start(self) -> bool:
        """Start the TTS worker thread."""
        if self._running:
            return True
        self._running = True
        self._thread = threading.Thread(target=self._worker, daemon=True, name="tts-worker")
        self._thread.start()
        logger.info("TTS engine started")
        return True

    def speak(self, text: str) -> None:
        """Queue text for speech and return immediately."""
        if not text or not text.strip():
            return
        self._queue.put((text.strip(), None))

    def speak_and_wait(self, text: str, timeout: float = 30.0) -> bool:
        """Speak text and block until done. False on timeout or when speech is disabled."""
        if not text or not text.strip():
            return True
        if not self._running:
            return False
        done_event = threading.Event()
        self._queue.put((text.strip(), done_event))
        return done_event.wait(timeout=timeout)

    def _clear_queue(self) -> None:
        """Drain the queue, releasing any blocking speak_and_wait() callers."""
        while True:
            try:
                item = self._queue.get_nowait()
            except Empty:
                break
            if item is not None and item[1] is not None:
                item[1].set()

    def _init_backends(self) -> bool:
        if self._use_defaults:
            elevenlabs_backend = ElevenLabsBackend()
            if elevenlabs_backend.initialize():
                self._primary = elevenlabs_backend
                logger.info("Using ElevenLabs as primary TTS")
            else:
                logger.info("ElevenLabs unavailable, using pyttsx3 only")
            pyttsx3_backend = Pyttsx3Backend()
            if pyttsx3_backend.initialize():
                self._fallback = pyttsx3_backend
        else:
            if self._primary is not None and not self._primary.initialize():
                self._primary = None
            if self._fallback is not None and not self._fallback.initialize():
                self._fallback = None
        return self._primary is not None or self._fallback is not None

    def _worker(self):
        """Background thread: initializes backends and processes queue."""
        if not self._init_backends():
            logger.error("No TTS backend available, speech disabled")
            self._running = False
            self._clear_queue()
            return

        while self._running:
            try:
                item = self._queue.get(timeout=0.5)
            except Empty:
                continue
            if item is None:
                break

            text, done_event = item
            try:
                started = time.monotonic()
                self._speak_with_fallback(text)
                logger.debug("Spoke %d chars in %.1fs", len(text), time.monotonic() - started)
            except Exception as e:
                logger.error("TTS error: %s", e)
            finally:
                if done_event is not None:
                    done_event.set()

    def _speak_with_fallback(self, text: str) -> None:
        """Try primary backend, fall back to secondary on failure."""
        if self._primary is not None and self._consecutive_primary_failures < self._max_consecutive_failures:
            try:
                self._primary.synthesize_and_play(text)
                self._consecutive_primary_failures = 0
                return
            except Exception as e:
                self._consecutive_primary_failures += 1
                logger.warning(
                    "%s failed (%d/%d): %s, falling back",
                    self._primary.name,
                    self._consecutive_primary_failures,
                    self._max_consecutive_failures,
                    e,
                )

        if self._fallback is not None:
            self._fallback.synthesize_and_play(text)
        else:
            logger.error("No fallback TTS available, speech dropped: %.50s", text)

    def stop(self):
        """Stop the TTS engine."""
        if not self._running and self._thread is None:
            return
        self._running = False
        self._queue.put(None)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        self._thread = None
        self._clear_queue()
        for backend in (self._primary, self._fallback):
            if backend is not None:
                backend.shutdown()
        logger.info("TTS engine stopped")
