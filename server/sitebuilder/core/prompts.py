# sitebuilder/core/prompts.py
"""
Prompts used by the generation pipeline.

Goals:
- Make the model answer in the File:/fenced-block format the extractor parses.
- Keep the context small: only the files the model asked for are included in full.
- On retries, tell the model exactly what the validator rejected.
"""

import json
from typing import Dict, List, Optional, Sequence

from sitebuilder.models import ModeFlags, ValidationVerdict
from sitebuilder.utils.config import APP_SCRIPT, INTERNAL_FILES, REQUIRED_SCAFFOLD

FORMAT_RULES = (
    "FILE FORMAT:\n"
    " - Write every file as a marker line followed by one fenced block:\n"
    "   File: path/to/file.ext\n"
    "   ```language\n"
    "   <complete file content>\n"
    "   ```\n"
    " - Paths are relative to the project root. No absolute paths, no '..', no hidden files.\n"
    " - Return complete files. No placeholders, no 'TODO: implement', no '...' lines.\n"
)


def _architecture(app_script: str) -> str:
    return (
        "ARCHITECTURE (no-build web project rendered in an iframe):\n"
        f" - index.html: semantic layout shell; links styles.css and loads {app_script} with type=\"module\".\n"
        " - styles.css: global styles, CSS custom properties, Grid/Flexbox layout.\n"
        f" - {app_script}: application state and coordination; imports every component it uses.\n"
        " - src/components/*.js: one Web Component per file (Shadow DOM, customElements.define).\n"
        f" - Every file under src/components/ MUST be imported from {app_script}, e.g. import './components/todo-list.js';\n"
    )


def build_system_prompt(flags: ModeFlags,
                        project_context: str = "",
                        feedback: Optional[str] = None,
                        required_scaffold: Sequence[str] = REQUIRED_SCAFFOLD,
                        app_script: str = APP_SCRIPT) -> str:
    """
    System prompt for one generation attempt: rules, mode, project context and,
    on a retry, the validator's feedback on the previous attempt.
    """
    parts = ["You are an expert web developer building a small multi-file project with the user.\n"]
    parts.append(_architecture(app_script))
    parts.append(FORMAT_RULES)

    if flags.informational:
        parts.append(
            "MODE: question. Answer in prose. Only include files if the user needs a change to see the answer.\n"
        )
    elif flags.require_scaffold:
        parts.append(
            "MODE: new project. Start with a minimal working version (MVP).\n"
            f" - You MUST return all of: {', '.join(required_scaffold)}.\n"
            " - Keep the first version small; mention further features as next steps after the files.\n"
        )
    else:
        parts.append(
            "MODE: existing project. Update only what is needed.\n"
            " - Return ONLY files you create or modify, each in full.\n"
            " - Do not regenerate unchanged files.\n"
        )

    if project_context:
        parts.append("\n" + project_context)
    if feedback:
        parts.append("\n" + feedback)
    return "\n".join(parts)


def build_project_context(existing_paths: Sequence[str],
                          file_contents: Optional[Dict[str, str]] = None,
                          spec_text: Optional[str] = None,
                          required_scaffold: Sequence[str] = REQUIRED_SCAFFOLD,
                          app_script: str = APP_SCRIPT) -> str:
    """Summary of the current project: file groups, missing core files, requested contents."""
    files = [p for p in existing_paths if p not in INTERNAL_FILES]
    layout = [p for p in files if p.endswith(".html")]
    styles = [p for p in files if p.endswith(".css")]
    components = [p for p in files if p.startswith("src/components/")]
    missing = [p for p in required_scaffold if p not in files]

    lines = [f"## Current Files ({len(files)})", ""]
    lines.append(f"Layout: {', '.join(layout) or 'None'}")
    lines.append(f"Styles: {', '.join(styles) or 'None'}")
    lines.append(f"App: {app_script if app_script in files else 'None'}")
    lines.append(f"Components: {len(components)} component(s)")
    lines.extend(f"  - {c}" for c in components)
    others = [p for p in files if p not in layout + styles + components and p != app_script]
    if others:
        lines.append(f"Other: {', '.join(others)}")

    if missing and files:
        lines.extend(["", "## Missing Core Files"])
        lines.extend(f"- {m}" for m in missing)

    if spec_text:
        lines.extend(["", "## Project Specification", "", spec_text.strip()])

    for path, content in (file_contents or {}).items():
        lines.extend(["", f"Current content of {path}:", "```", content, "```"])
    return "\n".join(lines) + "\n"


def build_retry_feedback(verdict: ValidationVerdict, attempt: int, max_attempts: int,
                         app_script: str = APP_SCRIPT) -> str:
    """Structured description of why the previous attempt failed."""
    lines = [
        f"PREVIOUS ATTEMPT REJECTED (attempt {attempt} of {max_attempts}).",
        f"Reason: {verdict.reason or 'validation failed'}",
    ]
    if verdict.missing:
        lines.append("Missing required files (you MUST include them): " + ", ".join(verdict.missing))
    orphans = [r.path for r in verdict.rejected if r.reason == "not imported"]
    if orphans:
        lines.append(f"Components not imported by {app_script} (add an import for each): " + ", ".join(orphans))
    others = [r for r in verdict.rejected if r.reason != "not imported"]
    if others:
        lines.append("Rejected files:")
        lines.extend(f" - {r.path}: {r.reason}" for r in others)
    if verdict.files:
        lines.append("Accepted files (return them again, complete): " + ", ".join(f.path for f in verdict.files))
    lines.append("Return the corrected, complete set of files in the required format.")
    return "\n".join(lines)


def build_file_needs_prompt(request_text: str, existing_paths: Sequence[str], max_files: int = 5) -> str:
    """Ask which existing files the model needs to see in full before editing."""
    files = [p for p in existing_paths if p not in INTERNAL_FILES]
    return (
        "You are preparing to edit an existing web project.\n"
        f"User request:\n{request_text}\n\n"
        f"Project files:\n{json.dumps(files, ensure_ascii=False)}\n\n"
        f"Which files do you need to read in full to make this change? Pick at most {max_files}.\n"
        "OUTPUT RULES:\n"
        " - Return ONLY a JSON array of paths from the list above, e.g. [\"src/app.js\", \"index.html\"].\n"
        " - Return [] if you need none.\n"
    )


def build_plan_prompt(request_text: str, flags: ModeFlags) -> str:
    """Ask for a short ordered checklist for the progress display."""
    scope = "a brand-new project" if flags.require_scaffold else "a change to an existing project"
    return (
        f"Break the following request for {scope} into 3 to 6 short, ordered steps.\n"
        f"Request:\n{request_text}\n\n"
        "OUTPUT RULES:\n"
        " - Return ONLY a JSON array of strings, each <= 60 chars.\n"
        " - Name the file a step produces when there is one, e.g. \"Create index.html layout\".\n"
    )


def as_messages(system_prompt: str, history: Sequence[Dict[str, str]]) -> List[Dict[str, str]]:
    msgs = [{"role": "system", "content": system_prompt}]
    for m in history:
        role = m.get("role")
        msgs.append({"role": "assistant" if role == "assistant" else "user", "content": m.get("content", "")})
    return msgs
