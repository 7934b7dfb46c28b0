"""Retrieval-augmented answer generation.

Embeds the latest user message, retrieves the closest chunks, wraps them in a
fixed instruction template and streams the model's raw output back unchanged.
"""
from typing import AsyncIterator, Dict, List, Sequence
import structlog

from navi import config
from navi.errors import NoHistoryError, NoRelevantContextError
from navi.llm_client import OllamaClient
from navi.rag.retriever import RetrievalResult, Retriever

logger = structlog.get_logger()

PROMPT_TEMPLATE = """Context from documents:
{context}

Based on the above context, please answer the following question:
{question}

If the context doesn't contain relevant information to answer the question, please say so."""


def last_user_message(history: Sequence[Dict[str, str]]) -> str:
    """Content of the most recent user turn.

    Falls back to the last message when no turn has role 'user'.

    Raises:
        NoHistoryError: If there is no message or it is blank
    """
    if not history:
        raise NoHistoryError("No messages provided")

    message = next(
        (m for m in reversed(history) if m.get("role") == "user"),
        history[-1],
    )
    content = (message.get("content") or "").strip()
    if not content:
        raise NoHistoryError("Last user message is empty")
    return content


def build_prompt(question: str, results: List[RetrievalResult]) -> str:
    """Fill the instruction template with ranked chunk texts."""
    context = "\n\n".join(result.content for result in results)
    return PROMPT_TEMPLATE.format(context=context, question=question)


class AugmentedGenerator:
    """Streams answers grounded in retrieved document chunks."""

    def __init__(self, retriever: Retriever, client: OllamaClient, top_k: int = None):
        self.retriever = retriever
        self.client = client
        self.top_k = top_k or config.RETRIEVAL_TOP_K

    async def answer(self, history: Sequence[Dict[str, str]]) -> AsyncIterator[bytes]:
        """Start a streamed answer for a conversation.

        The first upstream chunk is awaited here, so every failure that can
        happen before output starts is raised from this call rather than
        from the returned iterator.

        Args:
            history: Ordered messages, each with 'role' and 'content'

        Returns:
            Async iterator over the generation endpoint's raw bytes

        Raises:
            NoHistoryError: If there is no usable user message
            EmbeddingError: If the question cannot be embedded
            NoRelevantContextError: If nothing is stored to answer from
            GenerationEndpointError: If the generation endpoint rejects the request
        """
        question = last_user_message(history)

        query_vector = await self.client.embed(question)
        results = await self.retriever.rank(query_vector, self.top_k)

        if not results:
            logger.info("no_relevant_context_found", question_length=len(question))
            raise NoRelevantContextError(
                "No relevant documents found. Upload documents before asking questions."
            )

        prompt = build_prompt(question, results)

        logger.info(
            "augmented_prompt_built",
            num_sources=len(results),
            sources=[r.chunk.id for r in results],
            prompt_length=len(prompt),
        )

        upstream = self.client.generate_stream(prompt)
        try:
            first = await upstream.__anext__()
        except StopAsyncIteration:
            first = b""
        except BaseException:
            await upstream.aclose()
            raise

        return self._passthrough(first, upstream)

    async def _passthrough(self, first: bytes, upstream: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        completed = False
        try:
            if first:
                yield first
            async for chunk in upstream:
                yield chunk
            completed = True
        finally:
            # Runs on caller disconnect too; closes the upstream connection
            await upstream.aclose()
            if not completed:
                logger.warning("generation_stream_aborted")
