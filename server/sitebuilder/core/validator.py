# sitebuilder/core/validator.py
import json
import logging
import os
import re
import shutil
import subprocess
import tempfile
from typing import Dict, Any, List, Optional, Sequence, Tuple

from sitebuilder.core.extractor import extract_files
from sitebuilder.models import CandidateFile, ModeFlags, RejectedFile, ValidationVerdict
from sitebuilder.utils.config import EngineSettings
from sitebuilder.utils.file_helpers import is_markup, is_script, normalize_path

logger = logging.getLogger(__name__)

_DEFAULT_SETTINGS = EngineSettings()

_FORBIDDEN_CHARS = set('<>"|?*')
_DRIVE_RE = re.compile(r"^[A-Za-z]:[/\\]")
_PLACEHOLDER_LINES = {"PLACEHOLDER", "TBD", "...", "…"}
_UNIMPLEMENTED_RE = re.compile(r"\b(?:TODO|FIXME)\s*:?\s*implement", re.IGNORECASE)
_MODULE_RE = re.compile(r"^\s*(?:import|export)\b", re.MULTILINE)
_MARKUP_ROOT_RE = re.compile(r"<!doctype|<html", re.IGNORECASE)


# ----------------------------
# Local tools
# ----------------------------
def _run_cmd(cmd: List[str], cwd: Optional[str] = None, timeout: int = 10) -> Tuple[int, str]:
    """
    Run a command and return (returncode, combined_output).
    """
    try:
        proc = subprocess.run(cmd, cwd=cwd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True, timeout=timeout)
        return proc.returncode, proc.stdout or ""
    except subprocess.TimeoutExpired as e:
        return 124, f"validator timeout after {timeout}s: {e}"
    except OSError as e:
        return 1, f"validator execution failed: {e}"


def check_script_syntax(content: str, timeout: int = 10) -> Dict[str, Any]:
    """
    Best-effort syntax check of a classic (non-module) script with `node --check`.
    Returns {ok, skipped, output}; a missing node binary or a tool failure is
    reported as skipped, never as a syntax error.
    """
    node = shutil.which("node")
    if not node:
        return {"ok": True, "skipped": True, "output": "node not found; skipping syntax check"}
    fd, path = tempfile.mkstemp(suffix=".js", prefix="sb_check_")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        code, out = _run_cmd([node, "--check", path], timeout=timeout)
    finally:
        os.unlink(path)
    if code == 0:
        return {"ok": True, "skipped": False, "output": ""}
    if code == 124 or "SyntaxError" not in out:
        return {"ok": True, "skipped": True, "output": out}
    return {"ok": False, "skipped": False, "output": out.replace(path, "<script>")}


def _first_error_line(output: str) -> str:
    for line in output.splitlines():
        if "SyntaxError" in line:
            return line.strip()
    lines = [l.strip() for l in output.splitlines() if l.strip()]
    return lines[0] if lines else "unknown error"


# ----------------------------
# Per-file checks
# ----------------------------
def validate_path(path: str, internal_prefixes: Sequence[str] = _DEFAULT_SETTINGS.internal_prefixes) -> Tuple[Optional[str], Optional[str]]:
    """Return (normalized_path, None) when acceptable, else (None, reason)."""
    if not isinstance(path, str) or not path.strip():
        return None, "empty path"
    raw = path.strip()
    if raw.startswith("/") or raw.startswith("\\") or _DRIVE_RE.match(raw):
        return None, "absolute path not allowed"
    p = normalize_path(raw)
    segments = p.split("/")
    if ".." in segments:
        return None, "path traversal not allowed"
    if any(ch in _FORBIDDEN_CHARS or ord(ch) < 32 or ord(ch) == 127 for ch in p):
        return None, "invalid characters in path"
    name = segments[-1]
    if not name:
        return None, "path has no filename"
    if name.startswith(".") and not any(name.startswith(pref) for pref in internal_prefixes):
        return None, "hidden files not allowed"
    return p, None


def validate_content(path: str, content: str, language: str = "text",
                     settings: EngineSettings = _DEFAULT_SETTINGS) -> Optional[str]:
    """Return a rejection reason, or None when the content looks like a real file."""
    text = content or ""
    for line in text.splitlines():
        if line.strip() in _PLACEHOLDER_LINES:
            return f"placeholder content: {line.strip()!r}"
    if _UNIMPLEMENTED_RE.search(text):
        return "unimplemented TODO/FIXME marker"
    if len(text.strip()) < settings.min_content_len:
        return f"content too short (< {settings.min_content_len} chars)"

    checks = (
        ("{", "}", settings.brace_tolerance, "braces"),
        ("[", "]", settings.bracket_tolerance, "brackets"),
        ("(", ")", settings.paren_tolerance, "parentheses"),
    )
    for opener, closer, tolerance, label in checks:
        diff = text.count(opener) - text.count(closer)
        if abs(diff) > tolerance:
            return f"unbalanced {label} ({diff:+d})"

    if is_markup(path, language) and not _MARKUP_ROOT_RE.search(text):
        return "markup missing doctype or <html> root"

    if path.lower().endswith(".json") or language == "json":
        try:
            json.loads(text)
        except ValueError as e:
            return f"invalid JSON: {e}"

    if settings.script_check and is_script(path, language) and not _MODULE_RE.search(text):
        res = check_script_syntax(text, timeout=settings.script_check_timeout)
        if not res["ok"]:
            return f"javascript syntax error: {_first_error_line(res['output'])}"
    return None


def validate_candidate(candidate: CandidateFile,
                       settings: EngineSettings = _DEFAULT_SETTINGS) -> Tuple[Optional[CandidateFile], Optional[RejectedFile]]:
    path, reason = validate_path(candidate.path, settings.internal_prefixes)
    if path is None:
        logger.info("rejected %r: %s", candidate.path, reason)
        return None, RejectedFile(path=candidate.path, reason=reason)
    reason = validate_content(path, candidate.content, candidate.language, settings)
    if reason:
        logger.info("rejected %s: %s", path, reason)
        return None, RejectedFile(path=path, reason=reason)
    if path != candidate.path:
        candidate = CandidateFile(path=path, content=candidate.content, language=candidate.language)
    return candidate, None


# ----------------------------
# Project-level policy
# ----------------------------
def _component_paths(files: Sequence[CandidateFile]) -> List[str]:
    return [f.path for f in files if "components" in f.path.split("/")[:-1]]


def _reference_forms(path: str, app_script: str) -> List[str]:
    forms = [path]
    base_dir = os.path.dirname(app_script)
    if base_dir and path.startswith(base_dir + "/"):
        rel = path[len(base_dir) + 1:]
        forms.extend([rel, "./" + rel])
    return forms


def find_orphaned_components(files: Sequence[CandidateFile], app_script: str = _DEFAULT_SETTINGS.app_script) -> List[str]:
    app = next((f for f in files if f.path == app_script), None)
    if app is None:
        return []
    orphans = []
    for comp in _component_paths(files):
        if not any(form in app.content for form in _reference_forms(comp, app_script)):
            orphans.append(comp)
    return orphans


def validate_files(candidates: Sequence[CandidateFile], flags: ModeFlags,
                   settings: EngineSettings = _DEFAULT_SETTINGS) -> ValidationVerdict:
    accepted: List[CandidateFile] = []
    rejected: List[RejectedFile] = []
    for cand in candidates:
        ok_file, bad = validate_candidate(cand, settings)
        if ok_file is not None:
            accepted.append(ok_file)
        else:
            rejected.append(bad)

    scaffold = list(settings.required_scaffold)
    required = scaffold if flags.require_scaffold else []

    if not accepted:
        if (flags.has_existing_files and not flags.require_scaffold) or not flags.require_files:
            return ValidationVerdict(ok=True, rejected=rejected, required=required)
        return ValidationVerdict(ok=False, reason="no valid files", rejected=rejected,
                                 required=scaffold, missing=scaffold)

    present = {f.path for f in accepted}
    missing = [p for p in required if p not in present]
    orphans = find_orphaned_components(accepted, settings.app_script)

    reasons = []
    if missing:
        reasons.append("missing required files: " + ", ".join(missing))
    if orphans:
        reasons.append("components not imported by " + settings.app_script + ": " + ", ".join(orphans))
        rejected.extend(RejectedFile(path=p, reason="not imported") for p in orphans)

    return ValidationVerdict(
        ok=not reasons,
        reason="; ".join(reasons) or None,
        files=accepted,
        rejected=rejected,
        required=required,
        missing=missing,
    )


def validate_output(text: str, flags: ModeFlags,
                    settings: EngineSettings = _DEFAULT_SETTINGS) -> ValidationVerdict:
    return validate_files(extract_files(text), flags, settings)
