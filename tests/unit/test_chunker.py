"""Tests for sentence-based chunking."""
import pytest

from navi.errors import ValidationError
from navi.rag.chunker import TextChunker, chunk_text, split_sentences


SAMPLE = (
    "The cat sat on the mat. It was a sunny day! Did the dog notice? "
    "Nobody knows. The end is near. Python is fun to write. "
    "SQLite stores the vectors. Rain fell all afternoon."
)


class TestSplitSentences:
    def test_splits_on_terminal_punctuation(self):
        assert split_sentences("One. Two! Three?") == ["One.", " Two!", " Three?"]

    def test_text_without_punctuation_is_one_sentence(self):
        assert split_sentences("no punctuation here") == ["no punctuation here"]

    def test_keeps_trailing_text(self):
        assert split_sentences("Done. Not done") == ["Done.", " Not done"]

    def test_repeated_terminators_stay_with_sentence(self):
        assert split_sentences("Wait... What?!") == ["Wait...", " What?!"]


class TestChunkText:
    @pytest.mark.parametrize("text", ["", "   ", "\n\t "])
    def test_blank_text_yields_no_chunks(self, text):
        assert chunk_text(text, 100) == []

    def test_short_document_is_one_chunk(self):
        assert chunk_text("Hello world. This is a test.", 500) == [
            "Hello world.  This is a test."
        ]

    @pytest.mark.parametrize("size", [20, 40, 60, 100])
    def test_chunks_respect_size_bound(self, size):
        for chunk in chunk_text(SAMPLE, size):
            sentences = split_sentences(chunk)
            assert len(chunk) <= size or len(sentences) == 1

    @pytest.mark.parametrize("size", [1, 25, 80, 500])
    def test_every_sentence_appears_once_in_order(self, size):
        joined = " ".join(chunk.strip() for chunk in chunk_text(SAMPLE, size))

        position = 0
        for sentence in split_sentences(SAMPLE):
            found = joined.find(sentence.strip(), position)
            assert found >= position
            position = found + len(sentence.strip())
        assert joined.count("The cat sat on the mat.") == 1

    def test_oversized_sentence_is_its_own_chunk(self):
        long_sentence = "This sentence is much longer than the tiny limit allows."
        chunks = chunk_text(f"Hi. {long_sentence} Bye.", 10)

        assert chunks == ["Hi.", long_sentence, "Bye."]
        assert len(chunks[1]) > 10

    def test_fills_chunk_up_to_exact_limit(self):
        assert chunk_text("Aaaa. Bbbb. Cccc.", 12) == ["Aaaa.  Bbbb.", "Cccc."]

    def test_flushes_before_overflow(self):
        assert chunk_text("Aaaa. Bbbb. Cccc.", 11) == ["Aaaa.", "Bbbb.", "Cccc."]

    def test_is_deterministic(self):
        assert chunk_text(SAMPLE, 50) == chunk_text(SAMPLE, 50)

    @pytest.mark.parametrize("size", [0, -5])
    def test_rejects_non_positive_size(self, size):
        with pytest.raises(ValidationError):
            TextChunker(size)

    def test_default_size_from_config(self, monkeypatch):
        from navi import config

        monkeypatch.setattr(config, "CHUNK_SIZE", 123)
        assert TextChunker().max_chunk_size == 123
