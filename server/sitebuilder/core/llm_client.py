# sitebuilder/core/llm_client.py
import asyncio
import contextlib
import json
import logging
import os
import time
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from sitebuilder.core.ndjson_reader import ProtocolError, iter_ndjson
from sitebuilder.models import GenerationRecord
from sitebuilder.utils import config

logger = logging.getLogger(__name__)

VISION_KEYWORDS = ("vision", "llava", "bakllava", "llama3.2-vision", "minicpm-v")

CHAT_PATH = "/api/chat"
COMPLETION_PATH = "/api/generate"
TAGS_PATH = "/api/tags"


def _save_debug_log(prefix: str, payload: Dict[str, Any]):
    os.makedirs(config.LOG_DIR, exist_ok=True)
    fname = f"{int(time.time())}_{prefix}.json"
    path = os.path.join(config.LOG_DIR, fname)
    try:
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, ensure_ascii=False)
    except OSError:
        logger.exception("Failed to write debug log")


def is_vision_model(model_name: str) -> bool:
    name = (model_name or "").lower()
    return any(k in name for k in VISION_KEYWORDS)


def build_prompt(messages: List[Dict[str, Any]]) -> str:
    """
    Flatten a chat message list into the role-prefixed transcript that
    completion-style endpoints take as a single prompt.
    """
    lines = []
    for msg in messages:
        role = msg.get("role")
        if role == "assistant":
            prefix = "Assistant"
        elif role == "system":
            prefix = "System"
        else:
            prefix = "User"
        lines.append(f"{prefix}: {msg.get('content', '')}")
    return "\n".join(lines)


def _as_dicts(messages) -> List[Dict[str, Any]]:
    out = []
    for m in messages or []:
        if hasattr(m, "model_dump"):
            m = m.model_dump()
        out.append({"role": m.get("role", "user"), "content": m.get("content", "") or ""})
    return out


def _to_record(obj: Dict[str, Any], shape: str) -> GenerationRecord:
    if obj.get("error"):
        raise ProtocolError(f"generation service error: {obj['error']}")
    if shape == "chat":
        message = obj.get("message") or {}
        if not isinstance(message, dict):
            raise ProtocolError(f"malformed chat record: message is {type(message).__name__}")
        content = message.get("content") or ""
    else:
        content = obj.get("response") or ""
    if not isinstance(content, str):
        raise ProtocolError(f"malformed {shape} record: content is {type(content).__name__}")
    return GenerationRecord(
        content=content,
        done=bool(obj.get("done", False)),
        prompt_eval_count=obj.get("prompt_eval_count"),
        eval_count=obj.get("eval_count"),
    )


class GenerationClient:
    """
    Streaming client for an Ollama-compatible generation server.

    generate() talks to the chat endpoint and silently falls back to the
    completion endpoint when the server answers 404 for chat. Both shapes
    come back as the same GenerationRecord sequence.
    """

    def __init__(self,
                 base_url: str = config.OLLAMA_BASE_URL,
                 client: Optional[httpx.AsyncClient] = None,
                 timeout: Optional[httpx.Timeout] = None):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        # read=None: a slow model may pause between tokens; the run deadline bounds it
        self._client = client or httpx.AsyncClient(
            timeout=timeout or httpx.Timeout(None, connect=config.CONNECT_TIMEOUT),
        )

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def _send(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        request = self._client.build_request("POST", self.base_url + path, json=payload)
        try:
            return await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise ProtocolError(f"request to {path} failed: {e}") from e

    async def _send_until_set(self, path: str, payload: Dict[str, Any],
                              cancel_event: Optional[asyncio.Event]) -> Optional[httpx.Response]:
        """Like _send, but gives up (returning None) as soon as cancel_event fires."""
        if cancel_event is None:
            return await self._send(path, payload)
        if cancel_event.is_set():
            return None

        send = asyncio.ensure_future(self._send(path, payload))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({send, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            send.cancel()
            raise
        finally:
            waiter.cancel()
        if send in done:
            return send.result()

        send.cancel()
        try:
            response = await send
        except (asyncio.CancelledError, ProtocolError):
            return None
        # the response won the race after all
        await response.aclose()
        return None

    @staticmethod
    async def _raise_for_status(response: httpx.Response, label: str):
        if response.is_success:
            return
        try:
            body = (await response.aread()).decode("utf-8", errors="replace")
        except httpx.HTTPError:
            body = ""
        excerpt = body[:300]
        raise ProtocolError(f"{label} request failed: {response.status_code} {excerpt}".strip(),
                            status=response.status_code)

    async def _raw_chunks(self, response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            raise ProtocolError(f"stream interrupted: {e}") from e

    async def generate(self,
                       model: str,
                       messages,
                       cancel_event: Optional[asyncio.Event] = None,
                       options: Optional[Dict[str, Any]] = None) -> AsyncIterator[GenerationRecord]:
        msgs = _as_dicts(messages)
        payload: Dict[str, Any] = {"model": model, "messages": msgs, "stream": True}
        if options:
            payload["options"] = options

        shape = "chat"
        response = await self._send_until_set(CHAT_PATH, payload, cancel_event)
        if response is None:
            logger.info("generation cancelled before the chat request completed")
            return
        try:
            if response.status_code == 404:
                await response.aclose()
                logger.warning("chat endpoint unsupported for model %s; using completion endpoint", model)
                shape = "completion"
                fallback: Dict[str, Any] = {"model": model, "prompt": build_prompt(msgs), "stream": True}
                if options:
                    fallback["options"] = options
                retried = await self._send_until_set(COMPLETION_PATH, fallback, cancel_event)
                if retried is None:
                    logger.info("generation cancelled before the completion request completed")
                    return
                response = retried
            await self._raise_for_status(response, "Chat" if shape == "chat" else "Generate")

            received = 0
            records = iter_ndjson(self._raw_chunks(response))
            async for obj in _until_set(records, cancel_event):
                received += 1
                yield _to_record(obj, shape)
            if cancel_event is not None and cancel_event.is_set():
                logger.info("generation cancelled after %d records", received)
                return
            if received == 0:
                raise ProtocolError(f"empty response body from {shape} endpoint")
        finally:
            await response.aclose()

    async def collect_text(self,
                           model: str,
                           messages,
                           cancel_event: Optional[asyncio.Event] = None,
                           options: Optional[Dict[str, Any]] = None) -> str:
        parts = []
        async for rec in self.generate(model, messages, cancel_event=cancel_event, options=options):
            parts.append(rec.content)
            if rec.done:
                break
        return "".join(parts)

    async def list_models(self) -> List[Dict[str, Any]]:
        try:
            response = await self._client.get(self.base_url + TAGS_PATH)
        except httpx.HTTPError as e:
            raise ProtocolError(f"Failed to load models: {e}") from e
        if not response.is_success:
            raise ProtocolError(f"Failed to load models: {response.status_code}", status=response.status_code)
        data = response.json()
        models = data.get("models") if isinstance(data, dict) else None
        out = []
        for m in models or []:
            name = m.get("name") or ""
            out.append({
                "name": name,
                "size": m.get("size"),
                "modified_at": m.get("modified_at"),
                "supports_vision": is_vision_model(name),
            })
        return out


async def _until_set(source: AsyncIterator[Dict[str, Any]],
                     cancel_event: Optional[asyncio.Event]) -> AsyncIterator[Dict[str, Any]]:
    """Relay items from source until it ends or cancel_event fires, whichever is first."""
    if cancel_event is None:
        async for item in source:
            yield item
        return

    iterator = source.__aiter__()
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        while not cancel_event.is_set():
            step = asyncio.ensure_future(iterator.__anext__())
            done, _ = await asyncio.wait({step, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if step not in done:
                step.cancel()
                with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration, ProtocolError):
                    await step
                return
            try:
                item = step.result()
            except StopAsyncIteration:
                return
            yield item
    finally:
        waiter.cancel()
