"""Tests for the Ollama client using a mocked transport."""
import httpx
import pytest

from navi.errors import (
    EndpointError,
    EndpointUnavailableError,
    GenerationEndpointError,
    MalformedResponseError,
)
from navi.llm_client import OllamaClient


def client_for(handler) -> OllamaClient:
    return OllamaClient(
        base_url="http://ollama.test",
        embedding_model="embedder",
        chat_model="chatter",
        transport=httpx.MockTransport(handler),
    )


class TestEmbed:
    @pytest.mark.asyncio
    async def test_returns_vector_and_sends_model(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = request.content
            return httpx.Response(200, json={"embedding": [1, 2.5, -3]})

        vector = await client_for(handler).embed("hello")

        assert vector == [1.0, 2.5, -3.0]
        assert seen["path"] == "/api/embeddings"
        assert b'"model":"embedder"' in seen["body"].replace(b" ", b"")
        assert b'"prompt":"hello"' in seen["body"].replace(b" ", b"")

    @pytest.mark.asyncio
    async def test_error_status(self):
        client = client_for(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(EndpointError) as exc_info:
            await client.embed("hello")

        assert exc_info.value.status == 500

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [{}, {"embedding": []}, {"embedding": "nope"}, {"embedding": ["a", "b"]}, ["not", "a", "dict"]],
    )
    async def test_malformed_body(self, body):
        client = client_for(lambda request: httpx.Response(200, json=body))

        with pytest.raises(MalformedResponseError):
            await client.embed("hello")

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        client = client_for(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(MalformedResponseError):
            await client.embed("hello")

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(EndpointUnavailableError):
            await client_for(handler).embed("hello")

    @pytest.mark.asyncio
    async def test_status_and_missing_vector_are_distinct(self):
        status_error = client_for(lambda r: httpx.Response(404, text="model not found"))
        missing_vector = client_for(lambda r: httpx.Response(200, json={"error": "x"}))

        with pytest.raises(EndpointError):
            await status_error.embed("q")
        with pytest.raises(MalformedResponseError):
            await missing_vector.embed("q")

        assert not issubclass(EndpointError, MalformedResponseError)
        assert not issubclass(MalformedResponseError, EndpointError)


class TestGenerateStream:
    @pytest.mark.asyncio
    async def test_streams_raw_bytes_in_order(self):
        async def body():
            yield b"first "
            yield b"second"

        def handler(request):
            assert request.url.path == "/api/generate"
            return httpx.Response(200, content=body())

        chunks = [chunk async for chunk in client_for(handler).generate_stream("prompt")]

        assert b"".join(chunks) == b"first second"

    @pytest.mark.asyncio
    async def test_error_status_raises_before_first_chunk(self):
        client = client_for(lambda request: httpx.Response(503, text="overloaded"))

        with pytest.raises(GenerationEndpointError) as exc_info:
            await client.generate_stream("prompt").__anext__()

        assert exc_info.value.status == 503
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_unreachable_endpoint(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GenerationEndpointError) as exc_info:
            await client_for(handler).generate_stream("prompt").__anext__()

        assert exc_info.value.status is None
        assert exc_info.value.status_code == 503


class TestListModels:
    @pytest.mark.asyncio
    async def test_lists_names(self):
        client = client_for(
            lambda request: httpx.Response(200, json={"models": [{"name": "phi4:latest"}]})
        )

        assert await client.list_models() == ["phi4:latest"]
