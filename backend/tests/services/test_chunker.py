"""
Tests for TextChunker.

This test module verifies:
1. Short input (one chunk) and empty input (no chunks)
2. Sentence packing with overlap tails
3. Word-level packing and oversized sentences
4. Page-aware chunking with global chunk_index
5. Offsets, token bounds and text coverage

Most tests use WordCounter (one word = one token) so sizes are exact.
"""

import pytest
from pydantic import ValidationError

from contentpipe.services.processors.chunker import (
    ChunkingOptions,
    PageText,
    TextChunker,
)
from tests.fakes import WordCounter


def make_sentences(count: int, words_per_sentence: int = 10, prefix: str = "w") -> list[str]:
    return [
        " ".join(f"{prefix}{i}_{j}" for j in range(words_per_sentence)) + "."
        for i in range(count)
    ]


def two_paragraphs(total_sentences: int = 100) -> str:
    sentences = make_sentences(total_sentences)
    half = total_sentences // 2
    return " ".join(sentences[:half]) + "\n\n" + " ".join(sentences[half:])


@pytest.fixture
def chunker() -> TextChunker:
    return TextChunker(token_counter=WordCounter())


class TestChunkingOptions:

    def test_defaults(self):
        options = ChunkingOptions()
        assert options.max_tokens == 512
        assert options.overlap == 50
        assert options.preserve_sentences is True

    def test_overlap_must_be_smaller_than_max_tokens(self):
        with pytest.raises(ValidationError):
            ChunkingOptions(max_tokens=50, overlap=50)

    def test_max_tokens_must_be_positive(self):
        with pytest.raises(ValidationError):
            ChunkingOptions(max_tokens=0, overlap=0)


class TestShortAndEmptyInput:

    def test_three_sentences_fit_in_one_chunk(self):
        chunker = TextChunker()
        text = "Sentence one. Sentence two. Sentence three."

        result = chunker.chunk(text, ChunkingOptions(max_tokens=512, overlap=50))

        assert result.total_chunks == 1
        assert result.chunks[0].text == text
        assert result.chunks[0].chunk_index == 0
        assert result.chunks[0].start_index == 0
        assert result.chunks[0].end_index == len(text)

    @pytest.mark.parametrize("text", ["", "   ", "\n\t  \n"])
    def test_blank_input_yields_no_chunks(self, chunker, text):
        result = chunker.chunk(text)

        assert result.chunks == []
        assert result.total_chunks == 0
        assert result.average_chunk_size == 0.0

    def test_single_chunk_is_trimmed(self, chunker):
        text = "   Hello there.  \n"

        result = chunker.chunk(text, ChunkingOptions(max_tokens=10, overlap=2))

        chunk = result.chunks[0]
        assert chunk.text == "Hello there."
        assert text[chunk.start_index:chunk.end_index] == chunk.text


class TestSentencePacking:

    def test_long_text_splits_with_overlap(self, chunker):
        text = two_paragraphs()
        options = ChunkingOptions(max_tokens=400, overlap=50)

        result = chunker.chunk(text, options)

        assert result.total_tokens == 1000
        assert result.total_chunks >= 3
        first, second = result.chunks[0], result.chunks[1]
        tail = first.text.split()[-50:]
        assert second.text.split()[:50] == tail
        assert second.start_index < first.end_index

    def test_chunks_respect_max_tokens(self, chunker):
        result = chunker.chunk(two_paragraphs(), ChunkingOptions(max_tokens=400, overlap=50))

        assert all(chunk.token_count <= 400 for chunk in result.chunks)

    def test_chunks_end_on_sentence_boundaries(self, chunker):
        result = chunker.chunk(two_paragraphs(), ChunkingOptions(max_tokens=400, overlap=50))

        assert all(chunk.text.endswith(".") for chunk in result.chunks)

    def test_offsets_match_text(self, chunker):
        text = two_paragraphs()

        result = chunker.chunk(text, ChunkingOptions(max_tokens=120, overlap=15))

        for chunk in result.chunks:
            assert text[chunk.start_index:chunk.end_index] == chunk.text
            assert chunk.token_count == len(chunk.text.split())

    def test_chunks_cover_text_without_overlap(self, chunker):
        text = two_paragraphs()

        result = chunker.chunk(text, ChunkingOptions(max_tokens=120, overlap=15))

        pieces = [text[result.chunks[0].start_index:result.chunks[0].end_index]]
        for previous, chunk in zip(result.chunks, result.chunks[1:]):
            pieces.append(text[previous.end_index:chunk.end_index])
        assert "".join(pieces).split() == text.split()

    def test_overlap_tail_is_bounded(self, chunker):
        result = chunker.chunk(two_paragraphs(), ChunkingOptions(max_tokens=120, overlap=15))

        for previous, chunk in zip(result.chunks, result.chunks[1:]):
            shared = previous.end_index - chunk.start_index
            assert 0 < shared
            assert len(chunk.text[:shared].split()) <= 15

    def test_zero_overlap_has_no_repeated_words(self, chunker):
        text = two_paragraphs()

        result = chunker.chunk(text, ChunkingOptions(max_tokens=120, overlap=0))

        words = [word for chunk in result.chunks for word in chunk.text.split()]
        assert words == text.split()

    def test_indices_are_sequential(self, chunker):
        result = chunker.chunk(two_paragraphs(), ChunkingOptions(max_tokens=120, overlap=15))

        assert [c.chunk_index for c in result.chunks] == list(range(result.total_chunks))

    def test_average_chunk_size(self, chunker):
        result = chunker.chunk(two_paragraphs(), ChunkingOptions(max_tokens=400, overlap=50))

        expected = sum(c.token_count for c in result.chunks) / len(result.chunks)
        assert result.average_chunk_size == pytest.approx(expected)


class TestWordPacking:

    def test_word_level_packing(self, chunker):
        text = " ".join(f"w{i}" for i in range(30))

        result = chunker.chunk(
            text,
            ChunkingOptions(max_tokens=10, overlap=2, preserve_sentences=False),
        )

        assert [c.text.split()[0] for c in result.chunks] == ["w0", "w8", "w16", "w24"]
        assert all(c.token_count <= 10 for c in result.chunks)
        assert result.chunks[-1].text.split()[-1] == "w29"

    def test_sentence_without_punctuation_splits_by_words(self, chunker):
        text = " ".join(f"word{i}" for i in range(35))

        result = chunker.chunk(text, ChunkingOptions(max_tokens=10, overlap=0))

        assert result.total_chunks == 4
        assert all(c.token_count <= 10 for c in result.chunks)

    def test_oversized_sentence_among_short_ones(self, chunker):
        long_sentence = " ".join(f"long{i}" for i in range(25)) + "."
        text = f"Short one here. {long_sentence} Short two here."

        result = chunker.chunk(text, ChunkingOptions(max_tokens=10, overlap=0))

        assert all(c.token_count <= 10 for c in result.chunks)
        words = [word for chunk in result.chunks for word in chunk.text.split()]
        assert words == text.split()


class TestChunkByPages:

    def test_global_indices_across_pages(self, chunker):
        pages = [
            PageText(page_number=2, text=" ".join(make_sentences(12, prefix="b"))),
            PageText(page_number=1, text=" ".join(make_sentences(12, prefix="a"))),
        ]

        result = chunker.chunk_by_pages(pages, ChunkingOptions(max_tokens=40, overlap=5))

        assert [c.chunk_index for c in result.chunks] == list(range(result.total_chunks))
        page_numbers = [c.page_number for c in result.chunks]
        assert page_numbers == sorted(page_numbers)
        assert page_numbers[0] == 1
        assert result.chunks[0].text.startswith("a0_0")

    def test_chunks_never_span_pages(self, chunker):
        pages = [
            PageText(page_number=1, text="Alpha beta gamma."),
            PageText(page_number=2, text="Delta epsilon."),
        ]

        result = chunker.chunk_by_pages(pages, ChunkingOptions(max_tokens=100, overlap=5))

        assert [(c.page_number, c.text) for c in result.chunks] == [
            (1, "Alpha beta gamma."),
            (2, "Delta epsilon."),
        ]
        assert result.total_tokens == 5

    def test_empty_pages_are_skipped(self, chunker):
        pages = [
            PageText(page_number=1, text="   "),
            PageText(page_number=2, text="Only text."),
        ]

        result = chunker.chunk_by_pages(pages)

        assert result.total_chunks == 1
        assert result.chunks[0].chunk_index == 0
        assert result.chunks[0].page_number == 2

    def test_metadata(self, chunker):
        result = chunker.chunk_by_pages([PageText(page_number=1, text="One two three.")])

        assert result.chunks[0].metadata() == {
            "token_count": 3,
            "start_index": 0,
            "end_index": 14,
        }
