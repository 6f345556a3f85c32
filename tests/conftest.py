"""Shared fixtures and fakes for the sitebuilder backend tests."""
import asyncio

import pytest

from sitebuilder.core.ndjson_reader import ProtocolError
from sitebuilder.models import GenerationRecord
from sitebuilder.utils.config import EngineSettings


INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <link rel="stylesheet" href="styles.css">
</head>
<body>
  <div id="app"></div>
  <script type="module" src="src/app.js"></script>
</body>
</html>"""

STYLES_CSS = """body {
  margin: 0;
  font-family: system-ui, sans-serif;
}"""

APP_JS = """import './components/todo-list.js';

const app = document.getElementById('app');
app.appendChild(document.createElement('todo-list'));"""

APP_JS_NO_IMPORT = """const app = document.getElementById('app');
app.textContent = 'Hello from the app';"""

COMPONENT_JS = """export class TodoList extends HTMLElement {
  connectedCallback() {
    this.attachShadow({ mode: 'open' }).innerHTML = '<ul></ul>';
  }
}
customElements.define('todo-list', TodoList);"""


def block(path, lang, content):
    return f"File: {path}\n```{lang}\n{content}\n```\n"


def scaffold_reply(app_js=APP_JS, with_styles=True, with_component=True):
    parts = ["Here is your project.\n\n", block("index.html", "html", INDEX_HTML)]
    if with_styles:
        parts.append(block("styles.css", "css", STYLES_CSS))
    parts.append(block("src/app.js", "javascript", app_js))
    if with_component:
        parts.append(block("src/components/todo-list.js", "javascript", COMPONENT_JS))
    parts.append("\nNext steps: add persistence.")
    return "\n".join(parts)


class FakeGenerationClient:
    """
    Scripted stand-in for GenerationClient. Each generate() call consumes the next
    reply (a string, or an exception to raise); collect_text() consumes aux replies.
    """

    def __init__(self, replies=None, aux=None, chunk_size=16, delay=0.0, after_reply=None):
        self.replies = list(replies or [])
        self.aux = list(aux or [])
        self.chunk_size = chunk_size
        self.delay = delay
        self.after_reply = after_reply
        self.calls = []
        self.aux_calls = []
        self.options = []

    async def generate(self, model, messages, cancel_event=None, options=None):
        self.calls.append(messages)
        self.options.append(options)
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        for i in range(0, len(reply), self.chunk_size):
            if self.delay:
                await asyncio.sleep(self.delay)
            if cancel_event is not None and cancel_event.is_set():
                return
            yield GenerationRecord(content=reply[i:i + self.chunk_size])
        if self.after_reply:
            self.after_reply()
        yield GenerationRecord(done=True, prompt_eval_count=10, eval_count=len(reply))

    async def collect_text(self, model, messages, cancel_event=None, options=None):
        self.aux_calls.append(messages)
        reply = self.aux.pop(0) if self.aux else ""
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def list_models(self):
        return [{"name": "llama3", "size": 1, "modified_at": None, "supports_vision": False}]

    async def aclose(self):
        pass


class HangingClient(FakeGenerationClient):
    """Sends one chunk, then never finishes."""

    def __init__(self, first_chunk="File: index.html\n```html\n<!DOCTYPE html>\n"):
        super().__init__()
        self.first_chunk = first_chunk
        self.cancelled = False

    async def generate(self, model, messages, cancel_event=None, options=None):
        self.calls.append(messages)
        yield GenerationRecord(content=self.first_chunk)
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.cancelled = True
            raise


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def settings():
    return EngineSettings(
        script_check=False,
        heartbeat_secs=0,
        plan_enabled=False,
        file_needs_enabled=False,
        timeout=5,
    )


@pytest.fixture
def protocol_error():
    return ProtocolError("Chat request failed: 500 boom", status=500)
