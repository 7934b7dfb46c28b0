"""Sentence-based text chunking for the RAG pipeline.

Character-based sizes keep chunking independent of any tokenizer.
"""
import re
from typing import List
import structlog

from navi import config
from navi.errors import ValidationError

logger = structlog.get_logger()

# A run of non-terminal characters closed by one or more of . ! ?
SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]+")


def split_sentences(text: str) -> List[str]:
    """Split text into sentence-like units.

    Text without terminal punctuation is one sentence. Anything after the last
    terminator is kept as a final sentence so no text is dropped.

    Args:
        text: Text to split

    Returns:
        List of sentences in document order
    """
    sentences = []
    end = 0
    for match in SENTENCE_PATTERN.finditer(text):
        if match.start() > end:
            # Terminators with no preceding text, e.g. a leading "..."
            sentences.append(text[end:match.start()])
        sentences.append(match.group())
        end = match.end()

    if not sentences:
        return [text]

    remainder = text[end:]
    if remainder.strip():
        sentences.append(remainder)
    return sentences


class TextChunker:
    """Greedy sentence accumulator with a soft size bound."""

    def __init__(self, max_chunk_size: int = None):
        """Initialize the text chunker.

        Args:
            max_chunk_size: Maximum chunk size in characters (default from config)
        """
        if max_chunk_size is None:
            max_chunk_size = config.CHUNK_SIZE
        self.max_chunk_size = max_chunk_size

        if not isinstance(max_chunk_size, int) or isinstance(max_chunk_size, bool) or max_chunk_size <= 0:
            raise ValidationError(
                f"maxChunkSize must be a positive integer, got {self.max_chunk_size!r}"
            )

    def chunk_text(self, text: str) -> List[str]:
        """Split text into chunks of at most max_chunk_size characters.

        A single sentence longer than the limit is not split and becomes its
        own oversized chunk.

        Args:
            text: Text to chunk

        Returns:
            Chunk strings in document order (empty for blank text)
        """
        if not text or not text.strip():
            return []

        chunks = []
        current = ""

        for sentence in split_sentences(text):
            if len(current) + len(sentence) > self.max_chunk_size and current:
                chunks.append(current.strip())
                current = ""
            current += sentence + " "

        if current.strip():
            chunks.append(current.strip())

        logger.info(
            "text_chunked",
            text_length=len(text),
            chunk_count=len(chunks),
            max_chunk_size=self.max_chunk_size,
        )

        return chunks


def chunk_text(text: str, max_chunk_size: int = None) -> List[str]:
    """Chunk text with a one-off chunker (convenience function)."""
    return TextChunker(max_chunk_size).chunk_text(text)
