# sitebuilder/core/extractor.py
"""
File block extraction from model output.

The model writes files as a marker line followed by a fenced block:

    File: src/app.js
    ```javascript
    ...
    ```

The scanner is a two-state line machine (outside / inside a fence). Marker
lines only count outside a fence, so a marker quoted inside a file stays
part of that file's content. Only single-line regexes are used.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from sitebuilder.models import CandidateFile
from sitebuilder.utils.file_helpers import language_for_path, normalize_path

logger = logging.getLogger(__name__)

FENCE = "```"

_MARKER_RE = re.compile(
    r"^(?:[#*_]+\s*)?(?:(?:File|Path)\s*[:\-]\s*|//\s*(?:File|Path):\s*|/\*\s*(?:File|Path):\s*|<!--\s*(?:File|Path):\s*)"
    r"(?P<path>.+?)(?:\s*-->|\s*\*/)?$",
    re.IGNORECASE,
)

# fence tag -> default path when the model forgets the marker
_DEFAULT_PATHS = {
    "html": "index.html",
    "css": "styles.css",
    "js": "src/app.js",
    "javascript": "src/app.js",
    "ts": "src/app.js",
    "typescript": "src/app.js",
}


@dataclass
class ExtractionResult:
    files: List[CandidateFile] = field(default_factory=list)
    duplicates: List[str] = field(default_factory=list)
    unclosed: Optional[str] = None


def _match_marker(stripped: str) -> Optional[str]:
    m = _MARKER_RE.match(stripped)
    if not m:
        return None
    path = m.group("path").strip().strip("`*\"'").strip()
    return path or None


def _parse_fence_info(info: str):
    """Return (language, filename) from the text after an opening fence."""
    parts = info.split()
    if not parts:
        return "text", None
    first = parts[0]
    if "." in first or "/" in first:
        return "text", first
    return first.lower(), (parts[1] if len(parts) > 1 else None)


class _LineMachine:
    """Outside/inside-fence state; push() one line at a time, get a file back when a fence closes."""

    def __init__(self):
        self.pending_path: Optional[str] = None
        self.in_fence = False
        self.fence_lang = "text"
        self.buffer: List[str] = []

    def unclosed_path(self) -> Optional[str]:
        if not self.in_fence:
            return None
        return self.pending_path or _DEFAULT_PATHS.get(self.fence_lang)

    def flush(self) -> Optional[CandidateFile]:
        candidate = None
        if self.buffer:
            if self.pending_path:
                path = normalize_path(self.pending_path)
                language = language_for_path(path, self.fence_lang)
            elif self.fence_lang in _DEFAULT_PATHS:
                # a ts fence lands in src/app.js, so the tag follows the path
                path = _DEFAULT_PATHS[self.fence_lang]
                language = language_for_path(path)
            else:
                path = None
                logger.debug("dropping %s block without a path", self.fence_lang)
            if path:
                candidate = CandidateFile(path=path, content="\n".join(self.buffer).rstrip(), language=language)
        self.pending_path = None
        self.buffer = []
        return candidate

    def push(self, line: str) -> Optional[CandidateFile]:
        stripped = line.strip()
        if self.in_fence:
            if stripped == FENCE:
                self.in_fence = False
                return self.flush()
            self.buffer.append(line)
            return None

        marker = _match_marker(stripped)
        if marker:
            self.pending_path = marker
        elif stripped.startswith(FENCE):
            self.in_fence = True
            lang, name = _parse_fence_info(stripped.lstrip("`").strip())
            self.fence_lang = lang
            if name and not self.pending_path:
                self.pending_path = name
            self.buffer = []
        return None


def _scan(text: str, include_unclosed: bool) -> ExtractionResult:
    result = ExtractionResult()
    by_path: Dict[str, CandidateFile] = {}
    order: List[str] = []

    def keep(candidate: Optional[CandidateFile]):
        if candidate is None:
            return
        if candidate.path in by_path:
            result.duplicates.append(candidate.path)
            logger.debug("duplicate block for %s; keeping the later one", candidate.path)
        else:
            order.append(candidate.path)
        by_path[candidate.path] = candidate

    machine = _LineMachine()
    for line in (text or "").split("\n"):
        keep(machine.push(line))

    result.unclosed = machine.unclosed_path()
    if result.unclosed and include_unclosed:
        # truncated stream: keep what arrived
        keep(machine.flush())

    result.files = [by_path[p] for p in order]
    return result


class StreamingExtractor:
    """
    Incremental form of extract_completed_files for text that arrives in chunks.

    Each line is scanned exactly once, when its newline arrives; feed() returns
    the blocks whose closing fence came in with that chunk. A path may be
    returned more than once if the model repeats it.
    """

    def __init__(self):
        self._machine = _LineMachine()
        self._partial: List[str] = []

    def feed(self, chunk: str) -> List[CandidateFile]:
        if "\n" not in chunk:
            if chunk:
                self._partial.append(chunk)
            return []
        head, *rest = chunk.split("\n")
        self._partial.append(head)
        lines = ["".join(self._partial)] + rest[:-1]
        self._partial = [rest[-1]] if rest[-1] else []
        return self._push_all(lines)

    def finish(self) -> List[CandidateFile]:
        """End of text: the last line counts even without a newline. Unclosed blocks are not returned."""
        lines = ["".join(self._partial)] if self._partial else []
        self._partial = []
        return self._push_all(lines)

    def _push_all(self, lines: List[str]) -> List[CandidateFile]:
        out = []
        for line in lines:
            candidate = self._machine.push(line)
            if candidate is not None:
                out.append(candidate)
        return out


def extract_files(text: str) -> List[CandidateFile]:
    return _scan(text, include_unclosed=True).files


def extract_with_diagnostics(text: str) -> ExtractionResult:
    return _scan(text, include_unclosed=True)


def extract_completed_files(text: str) -> List[CandidateFile]:
    """Blocks whose closing fence has arrived."""
    return _scan(text, include_unclosed=False).files


def render_files(files: Iterable[CandidateFile]) -> str:
    blocks = []
    for f in files:
        blocks.append(f"File: {f.path}\n{FENCE}{f.language or 'text'}\n{f.content}\n{FENCE}")
    return "\n\n".join(blocks) + "\n"
