# sitebuilder/core/ndjson_reader.py
"""
Newline-delimited JSON reader for streamed generation responses.

The upstream server writes one JSON object per line, but the transport may
split a line across any number of chunks. Lines are only decoded once they
are complete; a malformed line ends the sequence with ProtocolError.
"""
import codecs
import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Dict, Optional, Union

logger = logging.getLogger(__name__)


class ProtocolError(RuntimeError):
    """Upstream broke the wire contract (bad status, missing body, bad framing)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def _decode_line(line: str) -> Dict[str, Any]:
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as e:
        snippet = line if len(line) <= 200 else line[:200] + "..."
        raise ProtocolError(f"malformed NDJSON record: {e.msg}: {snippet!r}") from e
    if not isinstance(obj, dict):
        raise ProtocolError(f"expected JSON object per line, got {type(obj).__name__}")
    return obj


async def iter_ndjson(chunks: AsyncIterable[Union[bytes, str]]) -> AsyncIterator[Dict[str, Any]]:
    decoder = codecs.getincrementaldecoder("utf-8")()
    buffer = ""
    async for chunk in chunks:
        if not chunk:
            continue
        try:
            buffer += decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        except UnicodeDecodeError as e:
            raise ProtocolError(f"invalid UTF-8 in stream: {e}") from e
        *lines, buffer = buffer.split("\n")
        for line in lines:
            line = line.strip()
            if not line:
                continue
            yield _decode_line(line)

    try:
        buffer += decoder.decode(b"", final=True)
    except UnicodeDecodeError as e:
        raise ProtocolError(f"stream ended inside a UTF-8 sequence: {e}") from e
    remaining = buffer.strip()
    if remaining:
        logger.debug("decoding trailing partial line (%d chars)", len(remaining))
        yield _decode_line(remaining)
