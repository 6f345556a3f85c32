# sitebuilder/core/planning_agent.py
"""
Short auxiliary exchanges that run before generation:
- which existing files the model needs in full (token economy)
- a 3-6 step plan for progress narration
Both are best-effort: any failure falls back to a safe default.
"""
import asyncio
import json
import logging
import os
from typing import Any, List, Optional, Sequence

from sitebuilder.core.llm_client import GenerationClient
from sitebuilder.core.ndjson_reader import ProtocolError
from sitebuilder.core.prompts import build_file_needs_prompt, build_plan_prompt
from sitebuilder.models import ModeFlags, PlanStep
from sitebuilder.utils.file_helpers import normalize_path

logger = logging.getLogger(__name__)

MIN_PLAN_STEPS = 3
MAX_PLAN_STEPS = 6

SCAFFOLD_PLAN = [
    "Create index.html layout",
    "Add global styles in styles.css",
    "Write app logic in src/app.js",
    "Build components in src/components",
]
EDIT_PLAN = [
    "Review existing files",
    "Apply requested changes",
    "Check imports and structure",
]


def _parse_json_list(raw: Optional[str]) -> Optional[List[Any]]:
    """Pull the first JSON array out of a reply that may carry fences or prose."""
    if not raw:
        return None
    start = raw.find("[")
    end = raw.rfind("]")
    if start == -1 or end <= start:
        return None
    try:
        parsed = json.loads(raw[start:end + 1])
    except ValueError:
        return None
    return parsed if isinstance(parsed, list) else None


def default_plan(require_scaffold: bool) -> List[PlanStep]:
    labels = SCAFFOLD_PLAN if require_scaffold else EDIT_PLAN
    return [PlanStep(id=f"step-{i + 1}", label=label) for i, label in enumerate(labels)]


def parse_plan(raw: Optional[str]) -> Optional[List[PlanStep]]:
    items = _parse_json_list(raw)
    if items is None:
        return None
    labels = []
    for it in items:
        if isinstance(it, dict):
            it = it.get("label") or it.get("step") or it.get("title") or ""
        if isinstance(it, str) and it.strip():
            labels.append(" ".join(it.split()))
    if len(labels) < MIN_PLAN_STEPS:
        return None
    return [PlanStep(id=f"step-{i + 1}", label=label) for i, label in enumerate(labels[:MAX_PLAN_STEPS])]


def parse_needed_files(raw: Optional[str], existing_paths: Sequence[str], max_files: int) -> List[str]:
    items = _parse_json_list(raw) or []
    existing = set(existing_paths)
    out: List[str] = []
    for it in items:
        if isinstance(it, str):
            p = normalize_path(it)
            if p in existing and p not in out:
                out.append(p)
        if len(out) >= max_files:
            break
    return out


def steps_matching(steps: Sequence[PlanStep], path: str) -> List[PlanStep]:
    """Open steps whose label names the file (path, basename, stem or directory)."""
    low_path = path.lower()
    base = os.path.basename(low_path)
    stem = os.path.splitext(base)[0]
    directory = os.path.dirname(low_path)
    hits = []
    for step in steps:
        if step.done:
            continue
        label = step.label.lower()
        tokens = {t.rstrip("/.,") for t in label.split()}
        if low_path in label or base in label or (len(stem) >= 3 and stem in label) or (directory and directory in tokens):
            hits.append(step)
    return hits


async def request_needed_files(client: GenerationClient,
                               model: str,
                               request_text: str,
                               existing_paths: Sequence[str],
                               max_files: int = 5,
                               cancel_event: Optional[asyncio.Event] = None,
                               temperature: Optional[float] = None) -> List[str]:
    prompt = build_file_needs_prompt(request_text, existing_paths, max_files)
    options = {"temperature": temperature} if temperature is not None else None
    try:
        raw = await client.collect_text(model, [{"role": "user", "content": prompt}],
                                        cancel_event=cancel_event, options=options)
    except ProtocolError as e:
        logger.warning("file-needs request failed: %s", e)
        return []
    needed = parse_needed_files(raw, existing_paths, max_files)
    logger.info("model requested %d file(s): %s", len(needed), needed)
    return needed


async def request_plan(client: GenerationClient,
                       model: str,
                       request_text: str,
                       flags: ModeFlags,
                       cancel_event: Optional[asyncio.Event] = None,
                       temperature: Optional[float] = None) -> List[PlanStep]:
    prompt = build_plan_prompt(request_text, flags)
    options = {"temperature": temperature} if temperature is not None else None
    try:
        raw = await client.collect_text(model, [{"role": "user", "content": prompt}],
                                        cancel_event=cancel_event, options=options)
    except ProtocolError as e:
        logger.warning("plan request failed: %s; using default plan", e)
        return default_plan(flags.require_scaffold)
    plan = parse_plan(raw)
    if plan is None:
        logger.info("unparseable plan reply; using default plan")
        return default_plan(flags.require_scaffold)
    return plan
