# sitebuilder/api/generate.py
import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from sitebuilder.core.codegen_agent import CodegenAgent, generate_project, stream_generate_project
from sitebuilder.core.llm_client import GenerationClient, _save_debug_log
from sitebuilder.core.ndjson_reader import ProtocolError
from sitebuilder.core.project_store import HttpProjectStore, InMemoryProjectStore
from sitebuilder.models import GenerateRequest
from sitebuilder.utils import config

logger = logging.getLogger(__name__)

router = APIRouter()

_agent: Optional[CodegenAgent] = None


def _build_store():
    if config.PROJECT_STORE == "http":
        return HttpProjectStore(config.BACKEND_API_BASE, timeout=config.BACKEND_TIMEOUT)
    return InMemoryProjectStore()


def get_agent() -> CodegenAgent:
    global _agent
    if _agent is None:
        _agent = CodegenAgent(GenerationClient(config.OLLAMA_BASE_URL), store=_build_store())
    return _agent


async def close_agent():
    global _agent
    if _agent is not None:
        await _agent.client.aclose()
        _agent = None


def _log_incoming_request(tag: str, req: GenerateRequest):
    if (req.options or {}).get("debug"):
        _save_debug_log(f"{tag}_incoming", req.model_dump())


@router.post("/", response_model=Dict[str, Any])
async def generate(req: GenerateRequest, agent: CodegenAgent = Depends(get_agent)):
    _log_incoming_request("generate", req)
    try:
        return await generate_project(agent, req)
    except Exception as e:
        logger.exception("generate failed")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/stream")
async def generate_stream(req: GenerateRequest, request: Request, agent: CodegenAgent = Depends(get_agent)):
    """
    Streaming version of /generate that yields newline-delimited JSON events.
    The client should read the response line-by-line and parse each JSON event;
    the last line is always one of complete, failed, timeout, cancelled or error.
    Disconnecting cancels the run.
    """
    _log_incoming_request("stream", req)
    cancel_event = asyncio.Event()
    try:
        async def event_generator():
            async for line in stream_generate_project(agent, req, cancel_event):
                if await request.is_disconnected():
                    logger.info("client disconnected; cancelling run")
                    cancel_event.set()
                yield line.encode("utf-8")
        return StreamingResponse(event_generator(), media_type="application/x-ndjson")
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/models", response_model=Dict[str, Any])
async def list_models(agent: CodegenAgent = Depends(get_agent)):
    try:
        models = await agent.client.list_models()
    except ProtocolError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"models": models, "default": agent.settings.model}
