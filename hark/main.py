"""
Hark - always-listening voice assistant, composition root.

    microphone -> RecognitionBackend -> ListeningEngine -> ResponseCascade
                    (vosk / cloud)        (wake gate,        (Groq -> Claude
                                           capture window)     -> HTTP -> template)
                                               |                     |
                                               v                     v
                                          TTSEngine <-----------  CommandMemory

Everything is built here and injected; no module holds a global engine.
Hardware and SDK imports happen inside the adapters, so `hark --help` is instant.
"""

import argparse
import logging
import signal
import sys
import threading
import time
from typing import Optional

from hark.config import DEBUG, PERSONA, RECOGNITION_BACKEND, SENSITIVITY_THRESHOLDS

logger = logging.getLogger("hark")

LOG_FORMAT = "[Hark] %(asctime)s %(name)s %(levelname)s: %(message)s"


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )
    # Third-party HTTP clients are chatty at DEBUG
    for noisy in ("httpx", "httpcore", "anthropic", "groq"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    threading.excepthook = _daemon_thread_exception_hook


# Catch unhandled exceptions in daemon threads so they don't die silently
def _daemon_thread_exception_hook(args):
    logger.error(
        "Unhandled exception in thread '%s': %s",
        args.thread.name if args.thread else "unknown",
        args.exc_value,
        exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hark", description="Always-listening wake-word voice assistant")
    parser.add_argument(
        "--backend",
        "-b",
        choices=("vosk", "speech_recognition"),
        default=RECOGNITION_BACKEND,
        help="Speech recognition backend (default: %(default)s)",
    )
    parser.add_argument("--wake-word", "-w", default=None, help="Wake word to listen for")
    parser.add_argument("--sensitivity", "-s", choices=sorted(SENSITIVITY_THRESHOLDS), default=None)
    parser.add_argument("--language", "-l", default=None, help="Recognition locale, e.g. en-US")
    parser.add_argument("--timeout", "-t", type=int, default=None, help="Seconds to wait for a command after waking")
    parser.add_argument("--persona", "-p", default=None, help="Persona preset name or path to YAML file")
    parser.add_argument("--debug", action="store_true", default=DEBUG, help="Verbose logging")
    return parser


def cli_overrides(args: argparse.Namespace) -> dict:
    """Engine config patch from command-line flags that were actually given."""
    candidates = {
        "wake_word": args.wake_word,
        "sensitivity": args.sensitivity,
        "language": args.language,
        "command_timeout_seconds": args.timeout,
    }
    return {k: v for k, v in candidates.items() if v is not None}


class Hark:
    """Owns the long-lived pieces and the run loop."""

    def __init__(self, args: argparse.Namespace):
        self._args = args
        self._running = False
        self.engine = None
        self.cascade = None
        self.tts = None

    def start(self) -> bool:
        from hark.brain.cascade import ResponseCascade
        from hark.brain.memory import CommandMemory
        from hark.brain.providers import create_response_providers
        from hark.errors import HarkError
        from hark.perception.listener import ListeningEngine
        from hark.perception.recognition import create_recognition_backend
        from hark.perception.tts import TTSEngine
        from hark.personality import load_persona
        from hark.settings import JsonConfigStore

        try:
            persona = load_persona(self._args.persona or PERSONA)
        except FileNotFoundError as e:
            logger.error(str(e))
            return False

        self.tts = TTSEngine()
        self.tts.start()

        self.cascade = ResponseCascade(create_response_providers(persona), persona=persona)
        logger.info("Response cascade: %s", " -> ".join(self.cascade.provider_names + ["templates"]))
        backend_name = self._args.backend
        self.engine = ListeningEngine(
            config_store=JsonConfigStore(),
            backend_factory=lambda: create_recognition_backend(backend_name),
            cascade=self.cascade,
            speaker=self.tts,
            memory=CommandMemory(),
            persona=persona,
        )

        try:
            overrides = cli_overrides(self._args)
            if overrides:
                self.engine.update_config(overrides)

            config = self.engine.config
            if config.enabled and config.auto_start:
                # Greet before the microphone opens
                self.tts.speak_and_wait(persona.greeting(), timeout=10.0)
                self.engine.start()
            else:
                logger.info("Auto-start off (enabled=%s, auto_start=%s)", config.enabled, config.auto_start)
        except HarkError as e:
            logger.error("Could not start listening: %s", e)
            return False

        logger.info("%s online. Say %r to begin.", persona.name, self.engine.config.wake_word)
        return True

    def run(self):
        """Block until SIGINT/SIGTERM."""
        self._running = True
        signal.signal(signal.SIGINT, self._shutdown_handler)
        signal.signal(signal.SIGTERM, self._shutdown_handler)

        was_active = self.engine.is_active
        while self._running:
            time.sleep(0.5)
            status = self.engine.get_status()
            if was_active and not status.active:
                logger.warning("Listening stopped: %s", status.last_error or "no error reported")
            was_active = status.active

    def _shutdown_handler(self, signum, frame):
        """Handle Ctrl+C gracefully. Second Ctrl+C forces immediate exit."""
        if not self._running:
            logger.info("Force shutdown (second signal).")
            sys.exit(1)
        logger.info("Shutdown signal received. Press Ctrl+C again to force quit.")
        self._running = False

    def shutdown(self):
        logger.info("Shutting down...")
        if self.engine is not None:
            self.engine.stop()
            if not self.engine.wait_until_idle(timeout=3.0):
                logger.warning("Pending commands did not finish within 3s, dropping them")
            self.engine.close()
        if self.cascade is not None:
            self.cascade.close()
        if self.tts is not None:
            self.tts.stop()
        logger.info("Hark offline.")


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.debug)

    app = Hark(args)
    if not app.start():
        logger.error("Failed to initialize. Exiting.")
        app.shutdown()
        return 1

    try:
        app.run()
    except KeyboardInterrupt:
        pass
    finally:
        app.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
