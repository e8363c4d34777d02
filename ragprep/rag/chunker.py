"""Token-bounded text chunking with sentence-aware overlap for RAG pipeline.

Token counts come from the same tokenizer family the embedding and chat
providers use, so segment sizes are directly comparable to provider limits.
"""
import re
from typing import Dict, List, Optional, Protocol, Tuple
from dataclasses import dataclass, field
import tiktoken
import structlog

from ragprep import config
from ragprep.rag.md_parser import MarkdownNormalizer

logger = structlog.get_logger()

# Persian and English sentence endings
SENTENCE_BOUNDARY_PATTERN = re.compile(r"(?<=[.!?؟۔])\s+")
PARAGRAPH_BOUNDARY_PATTERN = re.compile(r"\n\s*\n")
MARKDOWN_SYNTAX_PATTERN = re.compile(r"[#*`\-_\s]")
URL_PATTERN = re.compile(r"https?://\S+")
EMAIL_PATTERN = re.compile(r"[\w.-]+@[\w.-]+\.\w+")

MIN_PARAGRAPH_CHARS = 10
MIN_PARAGRAPH_CONTENT_CHARS = 5
MIN_SEGMENT_CHARS = 20
MIN_SEGMENT_WORDS = 5
MIN_SEGMENT_TOKENS = 5
MIN_CONTENT_RATIO = 0.3
HARD_LIMIT_FACTOR = 1.5

# Emitted by decode() for a multi-byte character cut at a token boundary
REPLACEMENT_CHAR = "\ufffd"


class Tokenizer(Protocol):
    """Protocol for any tokenizer with encode() and decode()."""

    def encode(self, text: str) -> List[int]:
        ...

    def decode(self, tokens: List[int]) -> str:
        ...


@dataclass(frozen=True)
class TextSegment:
    """A bounded span of document text prepared for embedding.

    ``char_offset`` locates the segment's first own unit (after any overlap)
    in the normalized document text.
    """

    content: str
    token_count: int
    index: int
    char_offset: int = field(default=0, compare=False)


def split_sentences(text: str) -> List[str]:
    """Split text at sentence enders followed by whitespace, keeping the enders."""
    return [s.strip() for s in SENTENCE_BOUNDARY_PATTERN.split(text) if s.strip()]


def split_paragraphs(text: str) -> List[str]:
    """Split text on blank-line boundaries."""
    return [p for _, p in paragraph_spans(text)]


def paragraph_spans(text: str) -> List[Tuple[int, str]]:
    """Split text on blank-line boundaries, pairing each paragraph with its start offset."""
    spans = []
    start = 0
    for match in PARAGRAPH_BOUNDARY_PATTERN.finditer(text):
        spans.append((start, text[start:match.start()]))
        start = match.end()
    spans.append((start, text[start:]))

    return [
        (offset + len(raw) - len(raw.lstrip()), raw.strip())
        for offset, raw in spans
        if raw.strip()
    ]


class TextChunker:
    """Token-based text chunker with overlap support.

    Example:
        >>> with TextChunker(max_tokens=256, overlap_tokens=32) as chunker:
        ...     segments = chunker.chunk_text(markdown)
        >>> segments[0].index, segments[0].token_count
    """

    def __init__(
        self,
        max_tokens: Optional[int] = None,
        overlap_tokens: Optional[int] = None,
        tokenizer: Optional[Tokenizer] = None,
        normalizer: Optional[MarkdownNormalizer] = None,
    ):
        """Initialize the text chunker.

        Args:
            max_tokens: Token budget per segment (default from config)
            overlap_tokens: Tokens carried over between segments (default from config)
            tokenizer: Object with encode()/decode(); tiktoken for TOKENIZER_MODEL if omitted
            normalizer: Markdown normalizer (a default one is created if omitted)
        """
        self.max_tokens = config.CHUNK_MAX_TOKENS if max_tokens is None else max_tokens
        self.overlap_tokens = (
            config.CHUNK_OVERLAP_TOKENS if overlap_tokens is None else overlap_tokens
        )

        # Validate parameters
        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")
        if self.overlap_tokens < 0 or self.overlap_tokens >= self.max_tokens:
            raise ValueError(
                f"Overlap ({self.overlap_tokens}) must be between 0 and "
                f"max tokens ({self.max_tokens})"
            )

        self._tokenizer: Optional[Tokenizer] = tokenizer or tiktoken.encoding_for_model(
            config.TOKENIZER_MODEL
        )
        self.normalizer = normalizer or MarkdownNormalizer()

        logger.info(
            "chunker_initialized",
            max_tokens=self.max_tokens,
            overlap_tokens=self.overlap_tokens,
        )

    @property
    def hard_max_tokens(self) -> float:
        """Ceiling applied to assembled segments."""
        return self.max_tokens * HARD_LIMIT_FACTOR

    @property
    def tokenizer(self) -> Tokenizer:
        if self._tokenizer is None:
            raise RuntimeError("Chunker has been closed")
        return self._tokenizer

    def close(self) -> None:
        """Release the tokenizer handle. The chunker cannot be used afterwards."""
        if self._tokenizer is None:
            return
        release = getattr(self._tokenizer, "close", None)
        if callable(release):
            release()
        self._tokenizer = None
        logger.debug("chunker_closed")

    def __enter__(self) -> "TextChunker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def count_tokens(self, text: str) -> int:
        """Count tokens in text."""
        return len(self.tokenizer.encode(text))

    def chunk_text(self, text: str) -> List[TextSegment]:
        """Split a document into overlapping token-bounded segments.

        Args:
            text: Raw document text (markdown or plain)

        Returns:
            List of TextSegment objects indexed densely from 0. Empty or
            unusable documents yield an empty list.
        """
        tokenizer = self.tokenizer
        normalized = self.normalizer.normalize(text or "")

        if not normalized:
            return []

        paragraphs = [
            (offset, p) for offset, p in paragraph_spans(normalized)
            if self._is_valid_paragraph(p)
        ]

        # (text, offset of the first unit that is not overlap)
        pieces: List[Tuple[str, int]] = []
        current = ""
        current_offset = 0

        for offset, paragraph in paragraphs:
            if self.count_tokens(paragraph) > self.max_tokens:
                if current:
                    pieces.append((current, current_offset))
                    current = ""
                pieces.extend(self._split_oversized_paragraph(paragraph, offset))
                continue

            if not current:
                current, current_offset = paragraph, offset
                continue

            candidate = f"{current}\n\n{paragraph}"
            if self.count_tokens(candidate) > self.max_tokens:
                pieces.append((current, current_offset))
                current = self._seed_with_overlap(current, paragraph, "\n\n")
                current_offset = offset
            else:
                current = candidate

        if current:
            pieces.append((current, current_offset))

        segments = []
        for piece, offset in pieces:
            content = self._final_clean(piece)
            token_count = len(tokenizer.encode(content))
            if self._is_valid_segment(content, token_count):
                segments.append(
                    TextSegment(
                        content=content,
                        token_count=token_count,
                        index=len(segments),
                        char_offset=offset,
                    )
                )

        logger.info(
            "text_chunked",
            text_length=len(text),
            candidate_count=len(pieces),
            chunk_count=len(segments),
            dropped=len(pieces) - len(segments),
        )

        return segments

    def _split_oversized_paragraph(self, paragraph: str, offset: int) -> List[Tuple[str, int]]:
        """Pack a paragraph larger than the budget at sentence granularity.

        Sentences that alone exceed the budget are cut into raw token windows.
        Each piece is paired with the offset of its first own sentence.
        """
        units: List[Tuple[str, int]] = []
        cursor = 0
        for sentence in split_sentences(paragraph):
            found = paragraph.find(sentence, cursor)
            if found >= 0:
                cursor = found + len(sentence)
            unit_offset = offset + (found if found >= 0 else cursor)

            tokens = self.tokenizer.encode(sentence)
            if len(tokens) <= self.max_tokens:
                units.append((sentence, unit_offset))
                continue
            for start in range(0, len(tokens), self.max_tokens):
                window = self._decode_window(tokens[start:start + self.max_tokens])
                if window:
                    units.append((window, unit_offset))

        pieces: List[Tuple[str, int]] = []
        current = ""
        current_offset = offset
        for unit, unit_offset in units:
            if not current:
                current, current_offset = unit, unit_offset
                continue

            candidate = f"{current} {unit}"
            if self.count_tokens(candidate) > self.max_tokens:
                pieces.append((current, current_offset))
                current = self._seed_with_overlap(current, unit, " ")
                current_offset = unit_offset
            else:
                current = candidate

        if current:
            pieces.append((current, current_offset))

        logger.debug(
            "oversized_paragraph_split",
            sentence_units=len(units),
            pieces=len(pieces),
        )

        return pieces

    def _decode_window(self, tokens: List[int]) -> str:
        """Decode a token slice, dropping characters cut in half at its edges."""
        return self.tokenizer.decode(tokens).strip().strip(REPLACEMENT_CHAR).strip()

    def _seed_with_overlap(self, previous: str, unit: str, separator: str) -> str:
        """Start a new segment with the tail of the previous one followed by unit.

        The overlap budget shrinks to whatever still fits beside the unit.
        """
        budget = min(self.overlap_tokens, self.max_tokens - self.count_tokens(unit))
        if budget <= 0:
            return unit

        overlap = self.get_overlap_text(previous, budget)
        if not overlap:
            return unit

        seeded = f"{overlap}{separator}{unit}"
        if self.count_tokens(seeded) > self.max_tokens:
            return unit
        return seeded

    def get_overlap_text(self, text: str, overlap_tokens: Optional[int] = None) -> str:
        """Build overlap text from the end of a segment.

        Whole sentences are collected backwards while they fit in the budget;
        if not even the last sentence fits, a raw token tail is used instead.

        Args:
            text: Segment the overlap is taken from
            overlap_tokens: Token budget (default: the chunker's overlap)

        Returns:
            Overlap text, empty when the budget is 0
        """
        budget = self.overlap_tokens if overlap_tokens is None else overlap_tokens
        if budget <= 0:
            return ""

        sentences = [s for p in split_paragraphs(text) for s in split_sentences(p)]
        selected: List[str] = []
        used = 0

        for sentence in reversed(sentences):
            sentence_tokens = self.count_tokens(sentence)
            if used + sentence_tokens > budget:
                break
            selected.insert(0, sentence)
            used += sentence_tokens

        if selected:
            return " ".join(selected)

        # No complete sentence fits: fall back to a token tail
        tokens = self.tokenizer.encode(text)
        if len(tokens) <= budget:
            return text.strip()
        return self._decode_window(tokens[-budget:])

    def _is_valid_paragraph(self, paragraph: str) -> bool:
        """Check whether a paragraph carries enough information to keep."""
        stripped = paragraph.strip()
        if len(stripped) < MIN_PARAGRAPH_CHARS:
            return False

        # Mostly punctuation or markdown syntax
        if len(MARKDOWN_SYNTAX_PATTERN.sub("", stripped)) < MIN_PARAGRAPH_CONTENT_CHARS:
            return False

        # Bare URL or email address
        if URL_PATTERN.fullmatch(stripped) or EMAIL_PATTERN.fullmatch(stripped):
            return False

        return True

    def _is_valid_segment(self, content: str, token_count: int) -> bool:
        """Check whether an assembled segment is worth embedding."""
        if len(content) < MIN_SEGMENT_CHARS:
            return False
        if token_count < MIN_SEGMENT_TOKENS or token_count > self.hard_max_tokens:
            return False
        if len(content.split()) < MIN_SEGMENT_WORDS:
            return False

        # Mostly markdown syntax
        if len(MARKDOWN_SYNTAX_PATTERN.sub("", content)) < len(content) * MIN_CONTENT_RATIO:
            return False

        return True

    def _final_clean(self, content: str) -> str:
        """Normalize blank lines and strip line-edge whitespace."""
        content = re.sub(r"\n{3,}", "\n\n", content)
        content = re.sub(r"[ \t]+$", "", content, flags=re.MULTILINE)
        content = re.sub(r"^[ \t]+", "", content, flags=re.MULTILINE)
        return content.strip()

    def get_chunk_stats(self, segments: List[TextSegment]) -> Dict[str, int]:
        """Get statistics about a set of segments.

        Args:
            segments: List of TextSegment objects

        Returns:
            Dictionary with segment statistics
        """
        if not segments:
            return {
                "chunk_count": 0,
                "total_tokens": 0,
                "avg_tokens": 0,
                "min_tokens": 0,
                "max_tokens": 0,
                "max_tokens_setting": self.max_tokens,
                "overlap_tokens": self.overlap_tokens,
            }

        token_counts = [s.token_count for s in segments]

        return {
            "chunk_count": len(segments),
            "total_tokens": sum(token_counts),
            "avg_tokens": sum(token_counts) // len(segments),
            "min_tokens": min(token_counts),
            "max_tokens": max(token_counts),
            "max_tokens_setting": self.max_tokens,
            "overlap_tokens": self.overlap_tokens,
        }


def chunk(
    text: str,
    max_tokens: Optional[int] = None,
    overlap_tokens: Optional[int] = None,
) -> List[TextSegment]:
    """Chunk a document with a short-lived chunker (convenience function).

    Args:
        text: Document text
        max_tokens: Token budget per segment (default from config)
        overlap_tokens: Overlap between segments (default from config)

    Returns:
        List of TextSegment objects
    """
    with TextChunker(max_tokens=max_tokens, overlap_tokens=overlap_tokens) as chunker:
        return chunker.chunk_text(text)
