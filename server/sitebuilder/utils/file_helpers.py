import os
from typing import Optional

EXTENSION_LANGUAGES = {
    ".html": "html",
    ".htm": "html",
    ".css": "css",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".json": "json",
    ".md": "markdown",
    ".svg": "svg",
    ".txt": "text",
}

# fence tags the model uses for the same language
LANGUAGE_ALIASES = {
    "js": "javascript",
    "mjs": "javascript",
    "ts": "typescript",
    "htm": "html",
    "md": "markdown",
}

SCRIPT_LANGUAGES = {"javascript", "js", "mjs", "cjs"}
MARKUP_LANGUAGES = {"html", "htm"}


def normalize_path(p: str) -> str:
    # make paths consistent for comparison; does not judge safety
    p = (p or "").strip().replace("\\", "/")
    while p.startswith("./"):
        p = p[2:]
    while "//" in p:
        p = p.replace("//", "/")
    return p


def language_for_path(path: str, declared: Optional[str] = None) -> str:
    """Pick a language tag: the declared fence tag wins unless it is generic."""
    if declared and declared.lower() not in ("", "text", "plain", "plaintext"):
        low = declared.lower()
        return LANGUAGE_ALIASES.get(low, low)
    ext = os.path.splitext(path or "")[1].lower()
    return EXTENSION_LANGUAGES.get(ext, "text")


def is_script(path: str, language: Optional[str] = None) -> bool:
    ext = os.path.splitext(path or "")[1].lower().lstrip(".")
    return (language or "").lower() in SCRIPT_LANGUAGES or ext in SCRIPT_LANGUAGES


def is_markup(path: str, language: Optional[str] = None) -> bool:
    ext = os.path.splitext(path or "")[1].lower().lstrip(".")
    return (language or "").lower() in MARKUP_LANGUAGES or ext in MARKUP_LANGUAGES
