"""Ingest pipeline preparing documents for retrieval.

Orchestrates:
- Markdown file discovery
- Frontmatter metadata extraction
- Text chunking
- Embedding generation
- Hand-off to an external segment store
"""
import inspect
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol
from dataclasses import dataclass, field
import structlog

from ragprep.errors import ProviderFailureError
from ragprep.rag.chunker import TextChunker, TextSegment
from ragprep.rag.embeddings import EmbeddingGenerator, ProgressCallback
from ragprep.rag.ranker import RankCandidate

logger = structlog.get_logger()

FRONTMATTER_FIELDS = ["title", "tags", "created", "updated", "author"]


@dataclass
class EmbeddedSegment:
    """A segment paired with its embedding vector."""

    segment: TextSegment
    embedding: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_candidate(self, segment_id: Any = None) -> RankCandidate:
        """Build a ranking candidate, carrying the segment text for reranking."""
        if segment_id is None:
            segment_id = f"{self.metadata.get('document_id')}:{self.segment.index}"
        return RankCandidate(
            segment_id=segment_id,
            embedding=self.embedding,
            metadata={**self.metadata, "content": self.segment.content},
        )


@dataclass
class IngestResult:
    """Outcome of ingesting one document."""

    document_id: str
    segments: List[EmbeddedSegment]
    skipped: int = 0

    @property
    def chunks_created(self) -> int:
        return len(self.segments)


class SegmentStore(Protocol):
    """Persistence collaborator; replaces a document's full segment set."""

    def replace_segments(self, document_id: str, segments: List[EmbeddedSegment]) -> Any:
        ...


class IngestPipeline:
    """Pipeline turning documents into embedded segments."""

    def __init__(
        self,
        chunker: TextChunker,
        generator: EmbeddingGenerator,
        store: Optional[SegmentStore] = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            chunker: Text chunker
            generator: Embedding generator
            store: Optional store receiving each document's segments (sync or async)
        """
        self.chunker = chunker
        self.generator = generator
        self.store = store

        self.stats = self._empty_stats()

        logger.info(
            "ingest_pipeline_initialized",
            max_tokens=self.chunker.max_tokens,
            overlap_tokens=self.chunker.overlap_tokens,
            embedding_model=self.generator.model,
            has_store=store is not None,
        )

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            "files_processed": 0,
            "files_failed": 0,
            "chunks_created": 0,
            "chunks_skipped": 0,
            "embeddings_generated": 0,
        }

    def discover_markdown_files(self, directory: Path) -> List[Path]:
        """Discover all markdown files under a directory.

        Raises:
            FileNotFoundError: If the directory doesn't exist
        """
        if not directory.exists():
            raise FileNotFoundError(f"Documents directory not found: {directory}")

        md_files = sorted(directory.rglob("*.md"))

        logger.info(
            "markdown_files_discovered",
            count=len(md_files),
            directory=str(directory),
        )

        return md_files

    async def ingest_text(
        self,
        document_id: str,
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> IngestResult:
        """Chunk and embed one document.

        Args:
            document_id: Identifier the segments are stored under
            text: Raw document text
            metadata: Document-level metadata copied onto every segment
            on_progress: Optional embedding progress callback(processed, total)

        Returns:
            IngestResult with segment/vector pairs in document order

        Raises:
            ProviderFailureError: If embedding fails (nothing is stored)
        """
        segments = self.chunker.chunk_text(text)
        embeddable = [s for s in segments if self.generator.is_embeddable(s.content)]
        skipped = len(segments) - len(embeddable)

        if skipped:
            logger.warning("segments_not_embeddable", document_id=document_id, skipped=skipped)

        embedded: List[EmbeddedSegment] = []

        if embeddable:
            vectors = await self.generator.embed_batch(
                [s.content for s in embeddable], on_progress=on_progress
            )
            if len(vectors) != len(embeddable):
                raise ProviderFailureError(
                    f"Got {len(vectors)} embeddings for {len(embeddable)} segments"
                )

            normalized = self.chunker.normalizer.normalize(text)
            headings = self.chunker.normalizer.extract_headings(normalized)

            for segment, vector in zip(embeddable, vectors):
                # Offset of the segment's own text, past any carried overlap
                heading_context = self.chunker.normalizer.get_heading_context(
                    headings, segment.char_offset
                )
                embedded.append(
                    EmbeddedSegment(
                        segment=segment,
                        embedding=vector,
                        metadata={
                            **(metadata or {}),
                            "document_id": document_id,
                            "chunk_index": segment.index,
                            "token_count": segment.token_count,
                            "heading_context": heading_context,
                        },
                    )
                )
        else:
            logger.warning("no_chunks_created", document_id=document_id)

        if self.store is not None:
            outcome = self.store.replace_segments(document_id, embedded)
            if inspect.isawaitable(outcome):
                await outcome

        self.stats["chunks_created"] += len(embedded)
        self.stats["chunks_skipped"] += skipped
        self.stats["embeddings_generated"] += len(embedded)

        logger.info(
            "document_ingested",
            document_id=document_id,
            chunks_created=len(embedded),
            skipped=skipped,
        )

        return IngestResult(document_id=document_id, segments=embedded, skipped=skipped)

    async def ingest_file(
        self, file_path: Path, document_id: Optional[str] = None
    ) -> IngestResult:
        """Ingest a single markdown file.

        Frontmatter fields (title, tags, created, updated, author) become
        segment metadata; ``created`` is also exposed as ``created_at`` for
        recency-aware ranking.

        Raises:
            FileNotFoundError: If the file doesn't exist
            UnicodeDecodeError: If the file is not valid UTF-8
        """
        if not file_path.exists():
            raise FileNotFoundError(f"Markdown file not found: {file_path}")

        logger.info("ingesting_file", path=str(file_path))

        content = file_path.read_text(encoding="utf-8")
        frontmatter, _ = self.chunker.normalizer.split_frontmatter(content)

        metadata: Dict[str, Any] = {"file_path": str(file_path), "file_name": file_path.name}
        for name in FRONTMATTER_FIELDS:
            if name in frontmatter:
                value = frontmatter[name]
                # Convert date/datetime objects to ISO format strings
                if hasattr(value, "isoformat"):
                    value = value.isoformat()
                metadata[name] = value
        if "created" in metadata:
            metadata["created_at"] = metadata["created"]

        result = await self.ingest_text(document_id or str(file_path), content, metadata)
        self.stats["files_processed"] += 1

        return result

    async def ingest_directory(
        self,
        directory: Path,
        progress_callback: Optional[Callable[[int, int, Path], None]] = None,
    ) -> Dict[str, int]:
        """Ingest every markdown file under a directory.

        A failing file is logged and counted; the remaining files are still processed.

        Args:
            directory: Root directory to scan recursively
            progress_callback: Optional callback(current, total, file_path)

        Returns:
            Dictionary with ingestion statistics
        """
        md_files = self.discover_markdown_files(directory)
        self.stats = self._empty_stats()

        for idx, file_path in enumerate(md_files, 1):
            if progress_callback:
                progress_callback(idx, len(md_files), file_path)

            try:
                await self.ingest_file(file_path)
            except Exception as e:
                logger.error(
                    "file_ingestion_failed",
                    path=str(file_path),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self.stats["files_failed"] += 1

        logger.info("ingest_directory_completed", stats=self.stats)

        return self.stats
