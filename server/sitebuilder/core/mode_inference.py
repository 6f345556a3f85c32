# sitebuilder/core/mode_inference.py
"""
Request classification from conversation history.

Pure functions only: no network, no storage. The orchestrator uses the
resulting ModeFlags to decide whether files (and a full scaffold) are
required from the model for this turn.
"""
import re
from typing import Any, Iterable, List, Optional, Sequence

from sitebuilder.models import ModeFlags
from sitebuilder.utils.config import INTERNAL_FILES

_QUESTION_RE = re.compile(
    r"^(what|why|how|where|when|who|which|explain|describe|does|do|is|are|can you explain|could you explain|tell me)\b",
    re.IGNORECASE,
)
_ACTION_RE = re.compile(
    r"\b(create|build|make|add|implement|fix|update|change|generate|write|refactor|remove|"
    r"delete|rename|style|restyle|redesign|replace|convert|scaffold|set up|setup)\b",
    re.IGNORECASE,
)


def _field(msg: Any, name: str) -> str:
    if isinstance(msg, dict):
        return msg.get(name) or ""
    return getattr(msg, name, "") or ""


def latest_user_message(messages: Sequence[Any]) -> Optional[str]:
    for msg in reversed(list(messages or [])):
        if _field(msg, "role") == "user":
            return _field(msg, "content")
    return None


def is_question(text: str) -> bool:
    t = (text or "").strip()
    if not t:
        return False
    return t.endswith("?") or bool(_QUESTION_RE.match(t))


def is_action_request(text: str) -> bool:
    return bool(_ACTION_RE.search(text or ""))


def is_informational(messages: Sequence[Any]) -> bool:
    """A question with no action verb: answer in prose, files optional."""
    text = latest_user_message(messages)
    if text is None:
        return False
    return is_question(text) and not is_action_request(text)


def user_files(paths: Iterable[str]) -> List[str]:
    return [p for p in (paths or []) if p and p not in INTERNAL_FILES]


def has_user_files(paths: Iterable[str]) -> bool:
    return bool(user_files(paths))


def classify_request(messages: Sequence[Any], existing_paths: Iterable[str]) -> ModeFlags:
    informational = is_informational(messages)
    has_files = has_user_files(existing_paths)
    require_files = not informational
    return ModeFlags(
        informational=informational,
        has_existing_files=has_files,
        require_files=require_files,
        require_scaffold=require_files and not has_files,
    )
