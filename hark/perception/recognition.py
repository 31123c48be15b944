"""Speech recognition backends.

The engine consumes recognition as an event source: partial/final transcripts
with a confidence score, errors, and end-of-session. Two adapters implement
the same interface and are picked at composition time:

    VoskBackend              - continuous on-device engine (vosk + sounddevice)
    SpeechRecognitionBackend - continuous cloud engine (SpeechRecognition, Google Web Speech)

Heavy audio libraries are imported inside start() so a missing library or
audio driver surfaces as BackendUnavailable instead of an import error.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from queue import Empty, Full, Queue
from typing import Callable, Optional

from hark.config import (
    AUDIO_INPUT_DEVICE,
    SR_AMBIENT_CALIBRATION,
    SR_PHRASE_TIME_LIMIT,
    VOSK_BLOCK_SIZE,
    VOSK_MODEL_PATH,
    VOSK_SAMPLE_RATE,
)
from hark.errors import BackendUnavailable, ConfigError, PermissionDenied

logger = logging.getLogger("hark.recognition")

# Error kinds recovered by restarting the backend. Everything else is fatal.
TRANSIENT_ERROR_KINDS = frozenset({"no-speech", "audio-capture", "network"})
PERMISSION_ERROR_KINDS = frozenset({"not-allowed", "service-not-allowed"})


@dataclass(frozen=True)
class RecognitionEvent:
    """One recognition result. Never mutated."""

    transcript: str
    confidence: float
    is_final: bool

    def __post_init__(self):
        object.__setattr__(self, "confidence", min(1.0, max(0.0, float(self.confidence or 0.0))))


@dataclass(frozen=True)
class RecognitionError:
    kind: str
    message: str = ""

    @property
    def transient(self) -> bool:
        return self.kind in TRANSIENT_ERROR_KINDS

    @property
    def permission(self) -> bool:
        return self.kind in PERMISSION_ERROR_KINDS


class RecognitionBackend(ABC):
    """Abstract recognition engine. Callbacks may fire on any thread."""

    name = "base"

    def __init__(self):
        self._on_result: Optional[Callable[[RecognitionEvent], None]] = None
        self._on_error: Optional[Callable[[RecognitionError], None]] = None
        self._on_end: Optional[Callable[[], None]] = None

    def on_result(self, callback: Callable[[RecognitionEvent], None]) -> None:
        self._on_result = callback

    def on_error(self, callback: Callable[[RecognitionError], None]) -> None:
        self._on_error = callback

    def on_end(self, callback: Callable[[], None]) -> None:
        self._on_end = callback

    @abstractmethod
    def start(self, locale: str, hints: list[str]) -> None:
        """Begin a recognition session. Raises BackendUnavailable or PermissionDenied."""
        ...

    @abstractmethod
    def stop(self) -> None:
        """End the session. Safe to call when not started."""
        ...

    def _emit_result(self, event: RecognitionEvent) -> None:
        logger.debug(
            "[%s] heard %r (confidence %.0f%%, %s)",
            self.name,
            event.transcript,
            event.confidence * 100,
            "final" if event.is_final else "partial",
        )
        self._fire(self._on_result, event)

    def _emit_error(self, error: RecognitionError) -> None:
        logger.warning("[%s] recognition error: %s %s", self.name, error.kind, error.message)
        self._fire(self._on_error, error)

    def _emit_end(self) -> None:
        logger.info("[%s] recognition session ended", self.name)
        self._fire(self._on_end)

    def _fire(self, callback, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("[%s] recognition callback failed", self.name)


def _mean_word_confidence(words) -> float:
    """Average of Vosk per-word 'conf' values. 0.0 when the engine gave none."""
    confs = [w.get("conf") for w in words or [] if isinstance(w, dict) and w.get("conf") is not None]
    if not confs:
        return 0.0
    return sum(confs) / len(confs)


def _is_permission_error(exc: BaseException) -> bool:
    return isinstance(exc, PermissionError) or "permission" in str(exc).lower()


class VoskBackend(RecognitionBackend):
    """Continuous offline recognition: sounddevice RawInputStream feeding a Vosk KaldiRecognizer.

    Model lookup: VOSK_MODEL_PATH/<locale>, VOSK_MODEL_PATH/<language>, then
    VOSK_MODEL_PATH itself. The loaded model is cached across restarts.
    Emits a partial event each time the partial transcript changes and a
    final event per utterance. The session ends (on_end) if the audio stream
    finishes without stop() being called.
    """

    name = "vosk"

    def __init__(
        self,
        model_path: str = VOSK_MODEL_PATH,
        sample_rate: int = VOSK_SAMPLE_RATE,
        block_size: int = VOSK_BLOCK_SIZE,
        device=AUDIO_INPUT_DEVICE,
    ):
        super().__init__()
        self._model_path = model_path
        self._sample_rate = sample_rate
        self._block_size = block_size
        self._device = device
        self._lock = threading.Lock()
        self._model = None
        self._loaded_model_dir: Optional[str] = None
        self._stream = None
        self._reader: Optional[threading.Thread] = None
        self._audio: Queue = Queue(maxsize=200)
        self._stopping = threading.Event()

    def resolve_model_dir(self, locale: str) -> Optional[str]:
        language = locale.split("-")[0].split("_")[0]
        for candidate in (
            os.path.join(self._model_path, locale),
            os.path.join(self._model_path, locale.lower()),
            os.path.join(self._model_path, language),
            self._model_path,
        ):
            if os.path.isdir(candidate):
                return candidate
        return None

    def start(self, locale: str, hints: list[str]) -> None:
        with self._lock:
            if self._stream is not None:
                return
            try:
                import sounddevice as sd
                import vosk
            except ImportError as e:
                raise BackendUnavailable(f"Vosk backend needs the vosk and sounddevice packages: {e}") from e
            except OSError as e:
                # sounddevice raises OSError at import when PortAudio is missing
                raise BackendUnavailable(f"Audio driver unavailable: {e}") from e

            recognizer = self._make_recognizer(vosk, locale)
            if hints:
                logger.debug("Vosk ignores recognition hints %s (no grammar biasing)", hints)

            self._stopping.clear()
            self._audio = Queue(maxsize=200)
            try:
                stream = sd.RawInputStream(
                    samplerate=self._sample_rate,
                    blocksize=self._block_size,
                    dtype="int16",
                    channels=1,
                    device=self._device,
                    callback=self._audio_callback,
                    finished_callback=self._on_stream_finished,
                )
                stream.start()
            except Exception as e:
                if _is_permission_error(e):
                    raise PermissionDenied(f"Microphone access denied: {e}") from e
                raise BackendUnavailable(f"Could not open microphone stream: {e}") from e

            self._stream = stream
            self._reader = threading.Thread(
                target=self._read_loop, args=(recognizer, self._audio), daemon=True, name="vosk-reader"
            )
            self._reader.start()
            logger.info("Vosk recognition started (locale=%s, device=%r)", locale, self._device)

    def _make_recognizer(self, vosk, locale: str):
        model_dir = self.resolve_model_dir(locale)
        if model_dir is None:
            raise BackendUnavailable(
                f"No Vosk model for {locale} under {self._model_path}. "
                "Download one from https://alphacephei.com/vosk/models"
            )
        if self._model is None or self._loaded_model_dir != model_dir:
            try:
                vosk.SetLogLevel(-1)
                self._model = vosk.Model(model_dir)
                self._loaded_model_dir = model_dir
                logger.info("Vosk model loaded from %s", model_dir)
            except Exception as e:
                raise BackendUnavailable(f"Failed to load Vosk model from {model_dir}: {e}") from e

        recognizer = vosk.KaldiRecognizer(self._model, self._sample_rate)
        recognizer.SetWords(True)
        if hasattr(recognizer, "SetPartialWords"):
            recognizer.SetPartialWords(True)  # per-word conf on partials (vosk >= 0.3.45)
        return recognizer

    def _audio_callback(self, indata, frames, time_info, status):
        if status:
            logger.debug("Audio stream status: %s", status)
        try:
            self._audio.put_nowait(bytes(indata))
        except Full:
            logger.debug("Vosk audio queue full, dropping %d frames", frames)

    def _on_stream_finished(self):
        if self._stopping.is_set():
            return
        try:
            self._audio.put_nowait(None)
        except Full:
            pass
        self._emit_end()

    def _read_loop(self, recognizer, audio: Queue):
        last_partial = ""
        while not self._stopping.is_set():
            try:
                chunk = audio.get(timeout=0.5)
            except Empty:
                continue
            if chunk is None:
                break
            try:
                if recognizer.AcceptWaveform(chunk):
                    result = json.loads(recognizer.Result())
                    last_partial = ""
                    text = result.get("text", "").strip()
                    if text:
                        self._emit_result(RecognitionEvent(text, _mean_word_confidence(result.get("result")), True))
                else:
                    partial = json.loads(recognizer.PartialResult())
                    text = partial.get("partial", "").strip()
                    if text and text != last_partial:
                        last_partial = text
                        conf = _mean_word_confidence(partial.get("partial_result"))
                        self._emit_result(RecognitionEvent(text, conf, False))
            except Exception as e:
                if not self._stopping.is_set():
                    self._emit_error(RecognitionError("audio-capture", str(e)))
                break

    def stop(self) -> None:
        with self._lock:
            self._stopping.set()
            stream, self._stream = self._stream, None
            reader, self._reader = self._reader, None
            if stream is not None:
                try:
                    stream.stop()
                    stream.close()
                except Exception as e:
                    logger.warning("Error while stopping audio stream: %s", e)
            try:
                self._audio.put_nowait(None)
            except Full:
                pass
            if reader is not None and reader is not threading.current_thread():
                reader.join(timeout=2)
            if stream is not None:
                logger.info("Vosk recognition stopped")


def parse_google_response(response) -> Optional[RecognitionEvent]:
    """Turn a recognize_google(show_all=True) payload into a final event.

    Returns None when nothing was recognised (an empty list or no alternatives).
    The engine omits confidence on some single-alternative results; those
    count as fully confident.
    """
    if not isinstance(response, dict):
        return None
    alternatives = response.get("alternative") or []
    if not alternatives:
        return None
    best = alternatives[0]
    text = (best.get("transcript") or "").strip()
    if not text:
        return None
    return RecognitionEvent(text, best.get("confidence", 1.0), True)


class SpeechRecognitionBackend(RecognitionBackend):
    """Continuous cloud recognition using SpeechRecognition's background listener.

    Each detected phrase is sent to the Google Web Speech API; only final
    results are produced. Network failures are reported as transient
    "network" errors so the engine restarts the listener.
    """

    name = "speech_recognition"

    def __init__(
        self,
        phrase_time_limit: float = SR_PHRASE_TIME_LIMIT,
        calibration_seconds: float = SR_AMBIENT_CALIBRATION,
        device_index=AUDIO_INPUT_DEVICE,
    ):
        super().__init__()
        self._phrase_time_limit = phrase_time_limit
        self._calibration_seconds = calibration_seconds
        self._device_index = device_index
        self._lock = threading.Lock()
        self._stopper = None
        self._locale = "en-US"
        self._session = 0

    def start(self, locale: str, hints: list[str]) -> None:
        with self._lock:
            if self._stopper is not None:
                return
            try:
                import speech_recognition as sr
            except ImportError as e:
                raise BackendUnavailable(f"SpeechRecognition package not installed: {e}") from e

            recognizer = sr.Recognizer()
            try:
                microphone = sr.Microphone(device_index=self._device_index)
                with microphone as source:
                    recognizer.adjust_for_ambient_noise(source, duration=self._calibration_seconds)
            except Exception as e:
                if _is_permission_error(e):
                    raise PermissionDenied(f"Microphone access denied: {e}") from e
                # AttributeError here means PyAudio is missing
                raise BackendUnavailable(f"Microphone unavailable (is PyAudio installed?): {e}") from e

            if hints:
                logger.debug("Google Web Speech ignores recognition hints %s", hints)

            self._locale = locale
            self._session += 1
            session = self._session
            self._stopper = recognizer.listen_in_background(
                microphone,
                lambda r, audio: self._on_audio(session, r, audio),
                phrase_time_limit=self._phrase_time_limit,
            )
            logger.info("SpeechRecognition listener started (locale=%s)", locale)

    def _on_audio(self, session: int, recognizer, audio) -> None:
        if session != self._session:
            return
        import speech_recognition as sr

        try:
            response = recognizer.recognize_google(audio, language=self._locale, show_all=True)
        except sr.RequestError as e:
            self._emit_error(RecognitionError("network", str(e)))
            return
        except Exception as e:
            self._emit_error(RecognitionError("engine", str(e)))
            return

        if session != self._session:
            return
        event = parse_google_response(response)
        if event is None:
            logger.debug("Phrase not recognised")
            return
        self._emit_result(event)

    def stop(self) -> None:
        with self._lock:
            self._session += 1
            stopper, self._stopper = self._stopper, None
        if stopper is not None:
            try:
                stopper(wait_for_stop=False)
            except Exception as e:
                logger.warning("Error while stopping background listener: %s", e)
            logger.info("SpeechRecognition listener stopped")


_BACKENDS = {
    VoskBackend.name: VoskBackend,
    SpeechRecognitionBackend.name: SpeechRecognitionBackend,
}


def create_recognition_backend(name: Optional[str] = None) -> RecognitionBackend:
    """Factory: build the configured backend adapter (not started)."""
    if name is None:
        from hark.config import RECOGNITION_BACKEND

        name = RECOGNITION_BACKEND
    try:
        backend_cls = _BACKENDS[name]
    except KeyError:
        raise ConfigError(f"Unknown recognition backend {name!r}. Choose from: {', '.join(_BACKENDS)}") from None
    logger.info("Recognition backend: %s", name)
    return backend_cls()
