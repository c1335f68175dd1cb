"""
Text Chunking Service

Splits extracted document text into bounded, overlapping chunks that are
embedded independently and retrieved by similarity search.

Chunking Strategy:
------------------
1. Whole text fits in max_tokens → one chunk.
2. preserve_sentences=True: split on terminal punctuation (. ! ?)
   followed by whitespace and pack whole sentences into a chunk until the
   next one would exceed max_tokens. A sentence that alone exceeds
   max_tokens is packed word by word instead.
3. preserve_sentences=False: the same packing over whitespace-delimited
   words.

Overlap:
--------
Every chunk after the first starts with an overlap tail: the longest run
of trailing whole words of the previous chunk whose token count does not
exceed ``overlap``. The tail is shortened from the front when tail plus
the next unit would not fit in max_tokens.

Each chunk is a contiguous slice of the input (``text[start_index:
end_index]``), so offsets are exact and the chunks, minus their overlap
prefixes, cover the input text.

Known limitation: a single word longer than max_tokens is emitted as its
own oversized chunk.

Configuration from settings:
- CHUNK_MAX_TOKENS: 512 (default)
- CHUNK_OVERLAP_TOKENS: 50 (default)
- CHUNK_PRESERVE_SENTENCES: True (default)
"""

import re
from typing import NamedTuple

from pydantic import BaseModel, Field, model_validator

from contentpipe.core.config import settings
from contentpipe.services.processors.tokens import TokenCounter


SENTENCE_BOUNDARY = re.compile(r"[.!?]+\s+")
WORD = re.compile(r"\S+")


class ChunkingOptions(BaseModel):
    """Chunking parameters. overlap must be smaller than max_tokens."""

    max_tokens: int = Field(512, gt=0)
    overlap: int = Field(50, ge=0)
    preserve_sentences: bool = True
    model: str = "gpt-4"

    @model_validator(mode="after")
    def check_overlap(self) -> "ChunkingOptions":
        if self.overlap >= self.max_tokens:
            raise ValueError("overlap must be smaller than max_tokens")
        return self

    @classmethod
    def from_settings(cls) -> "ChunkingOptions":
        return cls(
            max_tokens=settings.CHUNK_MAX_TOKENS,
            overlap=settings.CHUNK_OVERLAP_TOKENS,
            preserve_sentences=settings.CHUNK_PRESERVE_SENTENCES,
            model=settings.CHUNK_TOKEN_MODEL,
        )


class PageText(BaseModel):
    """Text of one document page (1-based page_number)."""

    page_number: int
    text: str


class TextChunk(BaseModel):
    text: str
    chunk_index: int
    token_count: int
    start_index: int
    end_index: int
    page_number: int | None = None

    def metadata(self) -> dict[str, int]:
        """Metadata persisted on the chunk row."""
        return {
            "token_count": self.token_count,
            "start_index": self.start_index,
            "end_index": self.end_index,
        }


class ChunkingResult(BaseModel):
    chunks: list[TextChunk] = Field(default_factory=list)
    total_chunks: int = 0
    total_tokens: int = 0
    average_chunk_size: float = 0.0


class _Span(NamedTuple):
    start: int
    end: int


class TextChunker:
    """
    Token-bounded, sentence-preferring text chunker.

    Usage:
    ------
    chunker = TextChunker()
    result = chunker.chunk(text, ChunkingOptions(max_tokens=400, overlap=50))
    paged = chunker.chunk_by_pages(pages)

    for chunk in paged.chunks:
        ContentChunk(
            source_id=source.id,
            chunk_index=chunk.chunk_index,
            page_number=chunk.page_number,
            chunk_text=chunk.text,
            chunk_metadata=chunk.metadata(),
        )
    """

    def __init__(self, token_counter: TokenCounter | None = None):
        self.token_counter = token_counter or TokenCounter()

    # ========================================
    # Public API
    # ========================================

    def chunk(
        self,
        text: str,
        options: ChunkingOptions | None = None,
    ) -> ChunkingResult:
        """
        Chunk a single text.

        Args:
            text: Text to chunk
            options: Chunking parameters (defaults: 512 / 50 / sentences)

        Returns:
            ChunkingResult with chunks indexed from 0. total_tokens is the
            token count of the whole input.
        """
        options = options or ChunkingOptions()

        if not text or not text.strip():
            return ChunkingResult()

        total_tokens = self._count(text, options)

        if total_tokens <= options.max_tokens:
            start = len(text) - len(text.lstrip())
            end = len(text.rstrip())
            spans = [_Span(start, end)]
        else:
            units = self._split_units(text, options)
            spans = self._pack(text, units, options)

        chunks = [
            TextChunk(
                text=text[span.start:span.end],
                chunk_index=index,
                token_count=self._count(text[span.start:span.end], options),
                start_index=span.start,
                end_index=span.end,
            )
            for index, span in enumerate(spans)
        ]

        return ChunkingResult(
            chunks=chunks,
            total_chunks=len(chunks),
            total_tokens=total_tokens,
            average_chunk_size=_average(chunks),
        )

    def chunk_by_pages(
        self,
        pages: list[PageText],
        options: ChunkingOptions | None = None,
    ) -> ChunkingResult:
        """
        Chunk each page separately and renumber chunk_index globally.

        Chunks never span pages. Offsets stay relative to their page text;
        pages are processed in page_number order.
        """
        options = options or ChunkingOptions()

        chunks: list[TextChunk] = []
        total_tokens = 0

        for page in sorted(pages, key=lambda p: p.page_number):
            result = self.chunk(page.text, options)
            total_tokens += result.total_tokens
            for chunk in result.chunks:
                chunks.append(chunk.model_copy(update={
                    "chunk_index": len(chunks),
                    "page_number": page.page_number,
                }))

        return ChunkingResult(
            chunks=chunks,
            total_chunks=len(chunks),
            total_tokens=total_tokens,
            average_chunk_size=_average(chunks),
        )

    # ========================================
    # Splitting
    # ========================================

    def _count(self, text: str, options: ChunkingOptions) -> int:
        return self.token_counter.count(text, options.model)

    def _split_units(self, text: str, options: ChunkingOptions) -> list[_Span]:
        """Sentence spans (oversized sentences expanded to words) or word spans."""
        if not options.preserve_sentences:
            return _words(text, 0, len(text))

        units: list[_Span] = []
        for sentence in _sentences(text):
            sentence_text = text[sentence.start:sentence.end]
            if self._count(sentence_text, options) > options.max_tokens:
                units.extend(_words(text, sentence.start, sentence.end))
            else:
                units.append(sentence)
        return units

    # ========================================
    # Packing
    # ========================================

    def _pack(
        self,
        text: str,
        units: list[_Span],
        options: ChunkingOptions,
    ) -> list[_Span]:
        spans: list[_Span] = []
        start: int | None = None
        end = 0

        for unit in units:
            if start is None:
                start, end = unit.start, unit.end
                continue

            if self._count(text[start:unit.end], options) <= options.max_tokens:
                end = unit.end
                continue

            spans.append(_Span(start, end))
            tail_start = self._overlap_start(text, start, end, unit, options)
            start = tail_start if tail_start is not None else unit.start
            end = unit.end

        if start is not None:
            spans.append(_Span(start, end))

        return spans

    def _overlap_start(
        self,
        text: str,
        chunk_start: int,
        chunk_end: int,
        next_unit: _Span,
        options: ChunkingOptions,
    ) -> int | None:
        """
        Offset where the next chunk's overlap tail begins, or None.

        Walks the previous chunk's words backwards while the suffix stays
        within the overlap limit, then drops words from the front of the
        tail until tail + next unit fits in max_tokens.
        """
        if options.overlap == 0:
            return None

        words = _words(text, chunk_start, chunk_end)
        tail: list[_Span] = []
        for word in reversed(words):
            if self._count(text[word.start:chunk_end], options) > options.overlap:
                break
            tail.insert(0, word)

        while tail:
            if self._count(text[tail[0].start:next_unit.end], options) <= options.max_tokens:
                return tail[0].start
            tail.pop(0)

        return None


# ========================================
# Utility Functions
# ========================================

def _sentences(text: str) -> list[_Span]:
    """Sentence spans, trimmed of surrounding whitespace."""
    spans: list[_Span] = []
    position = 0
    for match in SENTENCE_BOUNDARY.finditer(text):
        span = _trim(text, position, match.end())
        if span:
            spans.append(span)
        position = match.end()
    span = _trim(text, position, len(text))
    if span:
        spans.append(span)
    return spans


def _words(text: str, start: int, end: int) -> list[_Span]:
    return [_Span(m.start(), m.end()) for m in WORD.finditer(text, start, end)]


def _trim(text: str, start: int, end: int) -> _Span | None:
    segment = text[start:end]
    stripped = segment.strip()
    if not stripped:
        return None
    leading = len(segment) - len(segment.lstrip())
    return _Span(start + leading, start + leading + len(stripped))


def _average(chunks: list[TextChunk]) -> float:
    if not chunks:
        return 0.0
    return sum(chunk.token_count for chunk in chunks) / len(chunks)

