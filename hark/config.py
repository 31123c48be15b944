import os

from dotenv import load_dotenv

load_dotenv()

# Data directory (engine config + command memory live here)
DATA_DIR = os.path.expanduser(os.getenv("HARK_DATA_DIR", "./hark_data"))
ENGINE_CONFIG_FILE = os.path.join(DATA_DIR, "engine_config.json")
COMMAND_MEMORY_FILE = os.path.join(DATA_DIR, "command_memory.json")
MEMORY_MAX_ENTRIES = 200  # Oldest command turns dropped beyond this

DEBUG = os.getenv("HARK_DEBUG", "false").lower() in ("true", "1", "yes")

# Persona preset (hark/personalities/<name>.yaml) or a path to a YAML file
PERSONA = os.getenv("HARK_PERSONA", "jarvis")

# Engine defaults - persisted overrides in ENGINE_CONFIG_FILE win over these
DEFAULT_ENGINE_CONFIG = {
    "enabled": True,
    "wake_word": "jarvis",
    "auto_start": True,
    "sensitivity": "medium",  # "low" | "medium" | "high"
    "language": "en-US",
    "command_timeout_seconds": 10,  # Seconds to wait for a command after the wake word
}

# Minimum confidence for a wake-word match. Higher sensitivity = lower bar
# (more false wakes, fewer missed ones).
SENSITIVITY_THRESHOLDS = {
    "high": 0.5,
    "medium": 0.6,
    "low": 0.7,
}

# Recognition backend
RECOGNITION_BACKEND = os.getenv("RECOGNITION_BACKEND", "vosk")  # "vosk" (local) or "speech_recognition" (cloud)
VOSK_MODEL_PATH = os.path.expanduser(os.getenv("VOSK_MODEL_PATH", "./models/vosk"))
VOSK_SAMPLE_RATE = 16000
VOSK_BLOCK_SIZE = 4000  # 250ms at 16kHz
AUDIO_INPUT_DEVICE = int(os.getenv("AUDIO_INPUT_DEVICE")) if os.getenv("AUDIO_INPUT_DEVICE") else None
SR_PHRASE_TIME_LIMIT = 8.0  # Max seconds per phrase for the cloud backend
SR_AMBIENT_CALIBRATION = 0.5  # Seconds of ambient noise sampling before listening

# Auto-restart policy (recognition engines end their sessions on their own)
RESTART_DELAY_SECONDS = 0.1  # After a normal end-of-session
ERROR_RESTART_DELAY_SECONDS = 1.0  # After a transient error
RESTART_MAX_DELAY_SECONDS = 30.0  # Backoff cap between failed restarts
RESTART_MAX_ATTEMPTS = 5  # Consecutive failed restarts before settling into Idle

# Command dispatch
DISPATCH_WORKERS = 2  # Concurrent cascade calls (slow providers must not stall recognition)

# Response providers, tried in this order. Providers without credentials are skipped.
RESPONSE_PROVIDERS = [
    p.strip() for p in os.getenv("RESPONSE_PROVIDERS", "groq,claude,http").split(",") if p.strip()
]
RESPONSE_MAX_TOKENS = 500
RESPONSE_TEMPERATURE = 0.7
PROVIDER_TIMEOUT = 15.0  # Seconds per provider call

GROQ_API_KEY = os.getenv("GROQ_API_KEY")
GROQ_CHAT_MODEL = os.getenv("GROQ_CHAT_MODEL", "llama-3.1-8b-instant")

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
CLAUDE_MODEL = os.getenv("CLAUDE_MODEL", "claude-haiku-4-5-20251001")

# Any OpenAI-compatible /chat/completions endpoint (Ollama, LM Studio, Together, ...)
HTTP_CHAT_URL = os.getenv("HTTP_CHAT_URL", "")  # e.g. http://127.0.0.1:11434/v1
HTTP_CHAT_MODEL = os.getenv("HTTP_CHAT_MODEL", "llama3.2:3b")
HTTP_CHAT_API_KEY = os.getenv("HTTP_CHAT_API_KEY", "")

# ElevenLabs TTS (falls back to pyttsx3 when unset)
ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY")
ELEVENLABS_VOICE_ID = os.getenv("ELEVENLABS_VOICE_ID", "JBFqnCBsd6RMkjVDRZzb")  # "George"
ELEVENLABS_MODEL = "eleven_flash_v2_5"  # Low latency
ELEVENLABS_OUTPUT_FORMAT = "pcm_24000"  # PCM S16LE 24kHz
ELEVENLABS_SAMPLE_RATE = 24000  # Must match output_format
TTS_RATE = 175
TTS_VOLUME = 0.9

# System prompt shared by all response providers. {name} and {honorific} come from the persona.
SYSTEM_PROMPT_RESPONSE = """You are {name}, a voice assistant answering a spoken command.
Your reply will be read aloud by a text-to-speech engine.

Rules:
- Answer in one to three short sentences.
- No markdown, lists, code blocks or emoji.
- Address the user as "{honorific}" at most once."""
