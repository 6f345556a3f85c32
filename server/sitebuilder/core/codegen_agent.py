# sitebuilder/core/codegen_agent.py
"""
Code Generation Agent
- Exposes:
    class CodegenAgent with async run(request, sink, cancel_event) -> OrchestrationRun
    async def stream_generate_project(agent, request) -> AsyncGenerator[str, None]
    async def generate_project(agent, request) -> Dict[str, Any]
- One run turns one user request into a validated file set:
    classify -> load context -> plan -> (generate -> validate -> retry)* -> persist
  under a wall-clock deadline, with cooperative cancellation and heartbeats.
"""
import asyncio
import contextlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Set

from sitebuilder.core.events import ListSink, ProgressEvent, ProgressSink, QueueSink
from sitebuilder.core.extractor import StreamingExtractor
from sitebuilder.core.llm_client import GenerationClient, _save_debug_log
from sitebuilder.core.mode_inference import classify_request, latest_user_message, user_files
from sitebuilder.core.ndjson_reader import ProtocolError
from sitebuilder.core.planning_agent import default_plan, request_needed_files, request_plan, steps_matching
from sitebuilder.core.project_store import ProjectStore
from sitebuilder.core.prompts import as_messages, build_project_context, build_retry_feedback, build_system_prompt
from sitebuilder.core.validator import validate_output
from sitebuilder.models import CandidateFile, GenerateRequest, ModeFlags, PlanStep, ValidationVerdict
from sitebuilder.utils.config import EngineSettings

logger = logging.getLogger(__name__)

SPEC_FILE = "project.spec.md"


class RunState(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    GENERATING = "generating"
    VALIDATING = "validating"
    RETRYING = "retrying"
    COMPLETE = "complete"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


TERMINAL_STATES = {RunState.COMPLETE, RunState.FAILED, RunState.TIMED_OUT, RunState.CANCELLED}


class DeadlineExceeded(Exception):
    pass


@dataclass
class OrchestrationRun:
    """Mutable state of one request's processing. Owned by a single CodegenAgent.run call."""
    run_id: str
    max_attempts: int
    started_at: float
    deadline: float
    clock: Callable[[], float] = time.monotonic
    attempt: int = 0
    state: RunState = RunState.IDLE
    flags: Optional[ModeFlags] = None
    last_verdict: Optional[ValidationVerdict] = None
    emitted_file_paths: Set[str] = field(default_factory=set)
    plan_steps: List[PlanStep] = field(default_factory=list)
    cancelled: bool = False
    timed_out: bool = False
    text_parts: List[str] = field(default_factory=list)
    text_chars: int = 0
    final_files: List[CandidateFile] = field(default_factory=list)
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @classmethod
    def begin(cls, settings: EngineSettings, clock: Callable[[], float] = time.monotonic) -> "OrchestrationRun":
        now = clock()
        return cls(run_id=uuid.uuid4().hex[:12], max_attempts=settings.max_attempts,
                   started_at=now, deadline=now + settings.timeout, clock=clock)

    def elapsed(self) -> float:
        return self.clock() - self.started_at

    def remaining(self) -> float:
        return max(0.0, self.deadline - self.clock())

    def expired(self) -> bool:
        return self.clock() >= self.deadline

    @property
    def last_text(self) -> str:
        """Text received so far in the current (or last) attempt."""
        return "".join(self.text_parts)

    def reset_text(self):
        self.text_parts = []
        self.text_chars = 0

    def append_text(self, chunk: str):
        self.text_parts.append(chunk)
        self.text_chars += len(chunk)

    def transition(self, state: RunState):
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"run {self.run_id} already finished ({self.state.value})")
        logger.info("run %s: %s -> %s (attempt %d)", self.run_id, self.state.value, state.value, self.attempt)
        self.state = state


class _Emitter:
    """Stamps events with run id and elapsed time; nothing gets through after the terminal event."""

    def __init__(self, sink: ProgressSink, run: OrchestrationRun):
        self.sink = sink
        self.run = run
        self.closed = False

    async def __call__(self, phase: str, details: Optional[Dict[str, Any]] = None):
        if self.closed:
            logger.debug("run %s: suppressing %s after terminal event", self.run.run_id, phase)
            return
        event = ProgressEvent(phase=phase, run_id=self.run.run_id, elapsed=self.run.elapsed(), details=details or {})
        if event.terminal:
            self.closed = True
        await self.sink.emit(event)


class CodegenAgent:
    def __init__(self,
                 client: GenerationClient,
                 store: Optional[ProjectStore] = None,
                 settings: Optional[EngineSettings] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.client = client
        self.store = store
        self.settings = settings or EngineSettings()
        self.clock = clock

    # ----------------------------
    # Entry point
    # ----------------------------
    async def run(self,
                  request: GenerateRequest,
                  sink: ProgressSink,
                  cancel_event: Optional[asyncio.Event] = None) -> OrchestrationRun:
        cancel_event = cancel_event or asyncio.Event()
        run = OrchestrationRun.begin(self.settings, self.clock)
        emit = _Emitter(sink, run)
        model = request.model or self.settings.model
        await emit("start", {"model": model, "max_attempts": run.max_attempts,
                             "timeout": self.settings.timeout, "project_id": request.project_id})

        body = asyncio.create_task(self._drive(request, run, emit, cancel_event, model))
        stopper = asyncio.create_task(cancel_event.wait())
        beat = asyncio.create_task(self._heartbeat(run, emit))
        try:
            done, _ = await asyncio.wait({body, stopper}, timeout=run.remaining(),
                                         return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            # the caller itself went away
            cancel_event.set()
            await self._stop(body)
            run.cancelled = True
            run.state = RunState.CANCELLED
            await emit("cancelled", {"reason": "cancelled"})
            raise
        finally:
            beat.cancel()
            stopper.cancel()
            await asyncio.gather(beat, stopper, return_exceptions=True)

        if body not in done:
            await self._stop(body)
            if cancel_event.is_set():
                await self._finish_cancelled(run, emit)
            else:
                await self._finish_timeout(run, emit)
            return run

        try:
            outcome = body.result()
        except DeadlineExceeded:
            await self._finish_timeout(run, emit)
        except asyncio.CancelledError:
            await self._finish_cancelled(run, emit)
        except Exception as e:
            logger.exception("run %s crashed", run.run_id)
            run.state = RunState.FAILED
            await emit("error", {"message": str(e), "attempt": run.attempt, "text": self._sample(run)})
        else:
            if outcome:
                await self._finish_complete(request, run, emit)
            else:
                await self._finish_failed(run, emit)
        return run

    @staticmethod
    async def _stop(task: "asyncio.Task"):
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.info("stopped run body ended with %s: %s", type(e).__name__, e)

    async def _heartbeat(self, run: OrchestrationRun, emit: _Emitter):
        interval = self.settings.heartbeat_secs
        if interval <= 0:
            return
        while True:
            await asyncio.sleep(interval)
            if run.state == RunState.GENERATING:
                await emit("heartbeat", {"attempt": run.attempt, "chars": run.text_chars})

    # ----------------------------
    # Terminal transitions
    # ----------------------------
    def _sample(self, run: OrchestrationRun) -> str:
        text = run.last_text
        return text[-self.settings.text_sample_chars:] if text else ""

    async def _finish_timeout(self, run: OrchestrationRun, emit: _Emitter):
        run.timed_out = True
        run.state = RunState.TIMED_OUT
        logger.warning("run %s timed out after %.1fs (attempt %d)", run.run_id, run.elapsed(), run.attempt)
        await emit("timeout", {
            "timeout": self.settings.timeout,
            "attempt": run.attempt,
            "verdict": run.last_verdict.summary() if run.last_verdict else None,
            "text": self._sample(run),
        })

    async def _finish_cancelled(self, run: OrchestrationRun, emit: _Emitter):
        run.cancelled = True
        run.state = RunState.CANCELLED
        logger.info("run %s cancelled", run.run_id)
        await emit("cancelled", {"reason": "cancelled"})

    async def _finish_failed(self, run: OrchestrationRun, emit: _Emitter):
        run.transition(RunState.FAILED)
        verdict = run.last_verdict
        await emit("failed", {
            "reason": verdict.reason if verdict else "no attempts made",
            "attempts": run.attempt,
            "verdict": verdict.summary() if verdict else None,
            "text": self._sample(run),
        })

    async def _finish_complete(self, request: GenerateRequest, run: OrchestrationRun, emit: _Emitter):
        persisted: List[str] = []
        errors: List[Dict[str, str]] = []
        if self.store is not None and request.project_id and run.final_files:
            for f in run.final_files:
                try:
                    await asyncio.to_thread(self.store.put_file, request.project_id, f.path, f.content, f.language)
                    persisted.append(f.path)
                except Exception as e:
                    logger.exception("failed to persist %s", f.path)
                    errors.append({"path": f.path, "error": str(e)})
        run.transition(RunState.COMPLETE)
        await emit("complete", {
            "attempts": run.attempt,
            "files": [f.model_dump() for f in run.final_files],
            "plan": [s.model_dump() for s in run.plan_steps],
            "informational": bool(run.flags and run.flags.informational),
            "persisted": persisted,
            "persist_errors": errors,
            "tokens": {"prompt": run.prompt_tokens, "completion": run.completion_tokens,
                       "total": run.prompt_tokens + run.completion_tokens},
            "text": run.last_text,
        })

    # ----------------------------
    # Main loop
    # ----------------------------
    async def _drive(self, request: GenerateRequest, run: OrchestrationRun, emit: _Emitter,
                     cancel_event: asyncio.Event, model: str) -> bool:
        """Returns True when an attempt passed validation, False when attempts ran out."""
        settings = self.settings
        options = request.options or {}
        debug = bool(options.get("debug", False))
        history = [m.model_dump() for m in request.messages]
        request_text = latest_user_message(history) or ""

        run.transition(RunState.PLANNING)
        paths = await self._list_paths(request.project_id)
        flags = classify_request(history, paths)
        run.flags = flags
        await emit("analyzing", {**flags.model_dump(), "existing_files": len(user_files(paths))})

        contents: Dict[str, str] = {}
        spec_text = None
        if flags.has_existing_files:
            needed: List[str] = []
            if settings.file_needs_enabled and not flags.informational:
                needed = await request_needed_files(
                    self.client, model, request_text, user_files(paths),
                    max_files=settings.max_requested_files, cancel_event=cancel_event,
                    temperature=settings.temperatures.get("file_needs"))
            await emit("loading_files", {"requested": needed})
            contents = await self._fetch_contents(request.project_id, needed)
            if SPEC_FILE in paths:
                spec = await self._fetch_contents(request.project_id, [SPEC_FILE])
                spec_text = spec.get(SPEC_FILE)

        if not flags.informational:
            if settings.plan_enabled and options.get("plan", True):
                run.plan_steps = await request_plan(self.client, model, request_text, flags,
                                                    cancel_event=cancel_event,
                                                    temperature=settings.temperatures.get("plan"))
            else:
                run.plan_steps = default_plan(flags.require_scaffold)
            await emit("plan", {"steps": [s.model_dump() for s in run.plan_steps]})

        project_context = build_project_context(paths, contents, spec_text, settings.required_scaffold,
                                                settings.app_script) if paths else ""
        gen_options = {"temperature": settings.temperatures["generate"]} if "generate" in settings.temperatures else None

        for attempt in range(1, run.max_attempts + 1):
            if run.expired():
                raise DeadlineExceeded()
            run.attempt = attempt
            run.emitted_file_paths.clear()
            feedback = None
            if run.last_verdict is None:
                run.transition(RunState.GENERATING)
                await emit("generate", {"attempt": attempt, "max_attempts": run.max_attempts})
            else:
                run.transition(RunState.RETRYING)
                feedback = build_retry_feedback(run.last_verdict, attempt - 1, run.max_attempts,
                                                settings.app_script)
                await emit("retry", {"attempt": attempt, "max_attempts": run.max_attempts,
                                     "previous": run.last_verdict.summary()})
                run.transition(RunState.GENERATING)

            system_prompt = build_system_prompt(flags, project_context, feedback,
                                                settings.required_scaffold, settings.app_script)
            messages = as_messages(system_prompt, history)
            try:
                text = await self._stream_attempt(run, model, messages, emit, cancel_event, gen_options)
            except ProtocolError as e:
                logger.warning("run %s attempt %d: generation error: %s", run.run_id, attempt, e)
                run.last_verdict = ValidationVerdict(ok=False, reason=f"generation error: {e}")
                await emit("validate", {"attempt": attempt, **run.last_verdict.summary()})
                continue

            if debug:
                _save_debug_log(f"run_{run.run_id}_attempt_{attempt}", {"prompt": system_prompt, "text": text})
            if cancel_event.is_set():
                raise asyncio.CancelledError()
            if run.expired():
                raise DeadlineExceeded()

            run.transition(RunState.VALIDATING)
            verdict = await asyncio.to_thread(validate_output, text, flags, settings)
            run.last_verdict = verdict
            await emit("validate", {"attempt": attempt, **verdict.summary()})
            if verdict.ok:
                for step in run.plan_steps:
                    if not step.done:
                        step.done = True
                        await emit("step_complete", {"step": step.model_dump()})
                run.final_files = list(verdict.files)
                return True
            logger.info("run %s attempt %d rejected: %s", run.run_id, attempt, verdict.reason)
        return False

    async def _stream_attempt(self, run: OrchestrationRun, model: str, messages: List[Dict[str, str]],
                              emit: _Emitter, cancel_event: asyncio.Event,
                              options: Optional[Dict[str, Any]]) -> str:
        run.reset_text()
        scanner = StreamingExtractor()
        reported = 0
        async for rec in self.client.generate(model, messages, cancel_event=cancel_event, options=options):
            if rec.content:
                run.append_text(rec.content)
                await self._emit_completed_files(run, scanner.feed(rec.content), emit)
                if run.text_chars - reported >= self.settings.progress_every_chars:
                    reported = run.text_chars
                    await emit("generating", {"attempt": run.attempt, "chars": run.text_chars})
            if rec.done:
                run.prompt_tokens += rec.prompt_eval_count or 0
                run.completion_tokens += rec.eval_count or 0
                break
        await self._emit_completed_files(run, scanner.finish(), emit)
        return run.last_text

    async def _emit_completed_files(self, run: OrchestrationRun, files: List[CandidateFile], emit: _Emitter):
        for f in files:
            if f.path in run.emitted_file_paths:
                continue
            run.emitted_file_paths.add(f.path)
            await emit("file_complete", {"attempt": run.attempt, "path": f.path,
                                         "language": f.language, "size": len(f.content)})
            for step in steps_matching(run.plan_steps, f.path):
                step.done = True
                await emit("step_complete", {"step": step.model_dump(), "path": f.path})

    # ----------------------------
    # Store access
    # ----------------------------
    async def _list_paths(self, project_id: Optional[str]) -> List[str]:
        if self.store is None or not project_id:
            return []
        metas = await asyncio.to_thread(self.store.list_files, project_id)
        return [m.path for m in metas]

    async def _fetch_contents(self, project_id: Optional[str], paths: List[str]) -> Dict[str, str]:
        out: Dict[str, str] = {}
        if self.store is None or not project_id:
            return out
        for p in paths:
            f = await asyncio.to_thread(self.store.get_file, project_id, p)
            if f is not None:
                out[p] = f.content
        return out


# ----------------------------
# Streaming helpers (events -> newline-delimited JSON)
# ----------------------------
async def stream_generate_project(agent: CodegenAgent,
                                  request: GenerateRequest,
                                  cancel_event: Optional[asyncio.Event] = None) -> AsyncGenerator[str, None]:
    """
    Async generator that yields newline-delimited JSON events (strings).
    Closing the generator early (client disconnect) cancels the run.
    """
    cancel_event = cancel_event or asyncio.Event()
    sink = QueueSink()
    task = asyncio.create_task(agent.run(request, sink, cancel_event))
    try:
        async for event in sink:
            yield event.to_ndjson()
    finally:
        if not task.done():
            cancel_event.set()
        with contextlib.suppress(asyncio.CancelledError):
            await task


async def generate_project(agent: CodegenAgent, request: GenerateRequest) -> Dict[str, Any]:
    """
    Entrypoint for non-streaming generation: runs to the end and returns the
    terminal event as {"event": phase, "payload": {...}}.
    """
    sink = ListSink()
    await agent.run(request, sink)
    terminal = sink.terminal
    payload = dict(terminal.details)
    payload.update({"run_id": terminal.run_id, "elapsed": round(terminal.elapsed, 2)})
    return {"event": terminal.phase, "payload": payload}
