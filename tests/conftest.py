"""Shared fixtures: a fake Ollama server and a temporary vector store."""
import json
from typing import Callable, List, Optional

import httpx
import pytest

from navi.db import SQLiteVectorStore
from navi.llm_client import OllamaClient

OLLAMA_URL = "http://ollama.test"

VOCABULARY = ["cat", "dog", "python", "sqlite", "pizza", "rain"]


def keyword_embedding(text: str) -> List[float]:
    """Bag-of-words vector over a tiny vocabulary, with a bias term."""
    lowered = text.lower()
    return [float(lowered.count(word)) for word in VOCABULARY] + [0.1]


class RecordingStream(httpx.AsyncByteStream):
    """Generation body that counts chunks sent and notes when it is closed."""

    def __init__(self, chunks: List[bytes]):
        self.chunks = chunks
        self.sent = 0
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            self.sent += 1
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class FakeOllama:
    """In-process stand-in for the Ollama HTTP API.

    Attributes:
        embed_fn: Text -> vector used for /api/embeddings
        fail_embedding_on_call: Zero-based embedding call that returns fail_status
        generate_chunks: Byte chunks streamed by /api/generate
        generate_status: Status code for /api/generate
        generate_streams: One RecordingStream per successful /api/generate call
    """

    def __init__(self):
        self.embed_fn: Callable[[str], List[float]] = keyword_embedding
        self.fail_embedding_on_call: Optional[int] = None
        self.fail_status = 500
        self.generate_chunks: List[bytes] = [
            b'{"response":"Cats ","done":false}\n',
            b'{"response":"purr.","done":false}\n',
            b'{"response":"","done":true}\n',
        ]
        self.generate_status = 200
        self.models = ["phi4:latest"]
        self.embedding_prompts: List[str] = []
        self.generate_payloads: List[dict] = []
        self.generate_streams: List[RecordingStream] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/embeddings":
            return self._embeddings(json.loads(request.content))
        if request.url.path == "/api/generate":
            return self._generate(json.loads(request.content))
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": m} for m in self.models]})
        return httpx.Response(404, json={"error": "not found"})

    def _embeddings(self, payload: dict) -> httpx.Response:
        call = len(self.embedding_prompts)
        self.embedding_prompts.append(payload["prompt"])
        if call == self.fail_embedding_on_call:
            return httpx.Response(self.fail_status, text="model crashed")
        return httpx.Response(200, json={"embedding": self.embed_fn(payload["prompt"])})

    def _generate(self, payload: dict) -> httpx.Response:
        self.generate_payloads.append(payload)
        if self.generate_status != 200:
            return httpx.Response(self.generate_status, text="generation failed")

        stream = RecordingStream(list(self.generate_chunks))
        self.generate_streams.append(stream)
        return httpx.Response(200, stream=stream)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_ollama() -> FakeOllama:
    return FakeOllama()


@pytest.fixture
def ollama_client(fake_ollama) -> OllamaClient:
    return OllamaClient(
        base_url=OLLAMA_URL,
        embedding_model="phi4",
        chat_model="phi4",
        transport=fake_ollama.transport,
    )


@pytest.fixture
async def store(tmp_path):
    """Open SQLite store in a temp directory."""
    async with SQLiteVectorStore(tmp_path / "vectors.db") as opened:
        yield opened
