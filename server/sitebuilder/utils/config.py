# sitebuilder/utils/config.py
import os
from dataclasses import dataclass, field
from typing import Dict, Tuple

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Generation service
OLLAMA_BASE_URL = os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")
DEFAULT_MODEL = os.environ.get("DEFAULT_MODEL", "llama3")
CONNECT_TIMEOUT = float(os.environ.get("AI_CONNECT_TIMEOUT", 10))

# Persistence backend (projects/files)
BACKEND_API_BASE = os.environ.get("BACKEND_API_BASE", "http://localhost:8082")
BACKEND_TIMEOUT = int(os.environ.get("BACKEND_TIMEOUT", 10))
PROJECT_STORE = os.environ.get("PROJECT_STORE", "memory")  # "memory" | "http"

# Orchestration bounds
MAX_ATTEMPTS = int(os.environ.get("AI_MAX_ATTEMPTS", 3))
TIMEOUT = float(os.environ.get("AI_TIMEOUT", 180))
HEARTBEAT_SECS = float(os.environ.get("AI_HEARTBEAT_SECS", 5))
MAX_REQUESTED_FILES = int(os.environ.get("AI_MAX_REQUESTED_FILES", 5))
PLAN_ENABLED = _env_bool("AI_PLAN_ENABLED", True)
FILE_NEEDS_ENABLED = _env_bool("AI_FILE_NEEDS_ENABLED", True)
PROGRESS_EVERY_CHARS = int(os.environ.get("AI_PROGRESS_EVERY_CHARS", 512))
TEXT_SAMPLE_CHARS = int(os.environ.get("AI_TEXT_SAMPLE_CHARS", 4000))

# Validation heuristics
BRACE_TOLERANCE = int(os.environ.get("AI_BRACE_TOLERANCE", 3))
BRACKET_TOLERANCE = int(os.environ.get("AI_BRACKET_TOLERANCE", 3))
PAREN_TOLERANCE = int(os.environ.get("AI_PAREN_TOLERANCE", 5))
MIN_CONTENT_LEN = int(os.environ.get("AI_MIN_CONTENT_LEN", 10))
SCRIPT_CHECK = _env_bool("AI_SCRIPT_CHECK", True)
SCRIPT_CHECK_TIMEOUT = int(os.environ.get("AI_SCRIPT_CHECK_TIMEOUT", 10))

REQUIRED_SCAFFOLD = ("index.html", "styles.css", "src/app.js")
APP_SCRIPT = "src/app.js"
INTERNAL_PREFIXES = (".sitebuilder",)
INTERNAL_FILES = ("project.manifest.json", "project.guidance.md", "project.spec.md")

AGENT_TEMPERATURES: Dict[str, float] = {
    "generate": float(os.environ.get("AI_TEMP_GENERATE", 0.4)),
    "plan": float(os.environ.get("AI_TEMP_PLAN", 0.2)),
    "file_needs": float(os.environ.get("AI_TEMP_FILE_NEEDS", 0.0)),
}

LOG_DIR = os.environ.get("AI_BACKEND_LOG_DIR", "./ai_backend_logs")


@dataclass
class EngineSettings:
    """Snapshot of the tunables above, handed to the engine per instance."""
    model: str = DEFAULT_MODEL
    max_attempts: int = MAX_ATTEMPTS
    timeout: float = TIMEOUT
    heartbeat_secs: float = HEARTBEAT_SECS
    max_requested_files: int = MAX_REQUESTED_FILES
    plan_enabled: bool = PLAN_ENABLED
    file_needs_enabled: bool = FILE_NEEDS_ENABLED
    progress_every_chars: int = PROGRESS_EVERY_CHARS
    text_sample_chars: int = TEXT_SAMPLE_CHARS
    brace_tolerance: int = BRACE_TOLERANCE
    bracket_tolerance: int = BRACKET_TOLERANCE
    paren_tolerance: int = PAREN_TOLERANCE
    min_content_len: int = MIN_CONTENT_LEN
    script_check: bool = SCRIPT_CHECK
    script_check_timeout: int = SCRIPT_CHECK_TIMEOUT
    required_scaffold: Tuple[str, ...] = REQUIRED_SCAFFOLD
    app_script: str = APP_SCRIPT
    internal_prefixes: Tuple[str, ...] = INTERNAL_PREFIXES
    temperatures: Dict[str, float] = field(default_factory=lambda: dict(AGENT_TEMPERATURES))
