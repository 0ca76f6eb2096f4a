"""Ingest pipeline for indexing the document corpus.

Orchestrates:
- File discovery and loading
- Text chunking
- Batched embedding generation with bounded concurrency
- Per-record storage with error isolation
"""
import asyncio
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Callable, Dict, List, Optional
import structlog

from docchat import db
from docchat.errors import EmbeddingBackendError, IngestionError, LoaderError
from docchat.rag.chunker import TextChunker
from docchat.rag.embedder import Embedder, iter_batches
from docchat.rag.loaders import DEFAULT_LOADERS, Document, load_directory
from docchat.rag.store_faiss import FAISSVectorStore, RecordInput

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int], None]


@dataclass
class IngestStats:
    documents_loaded: int = 0
    files_failed: int = 0
    duplicates_skipped: int = 0
    chunks_created: int = 0
    embeddings_generated: int = 0
    embedding_failures: int = 0
    records_stored: int = 0
    ingestion_errors: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class IngestReport:
    """Outcome of an ingestion run, including the per-item failures."""

    stats: IngestStats
    loader_errors: List[LoaderError]
    embedding_errors: List[EmbeddingBackendError]
    ingestion_errors: List[IngestionError]


class IngestPipeline:
    """Pipeline for ingesting documents into the vector store."""

    def __init__(
        self,
        embedder: Embedder,
        store: FAISSVectorStore,
        chunker: TextChunker,
        docs_dir: Optional[Path] = None,
        batch_size: int = 16,
        concurrency: int = 4,
        loaders=DEFAULT_LOADERS,
    ):
        """Initialize the ingest pipeline.

        Args:
            embedder: Embedder used for chunk vectors
            store: Destination vector store
            chunker: Configured text chunker
            docs_dir: Corpus directory for ingest_all
            batch_size: Number of chunks per embedding request
            concurrency: Maximum embedding requests in flight
            loaders: Loader instances, matched by file suffix
        """
        self.embedder = embedder
        self.store = store
        self.chunker = chunker
        self.docs_dir = Path(docs_dir) if docs_dir else None
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.loaders = loaders

        logger.info(
            "ingest_pipeline_initialized",
            docs_dir=str(self.docs_dir),
            embedding_model=embedder.model,
            chunk_size=chunker.chunk_size,
            chunk_overlap=chunker.chunk_overlap,
            batch_size=batch_size,
            concurrency=concurrency,
        )

    def build_records(self, documents: List[Document]) -> List[RecordInput]:
        """Chunk documents into records still waiting for embeddings."""
        pending = []
        for document in documents:
            for chunk in self.chunker.chunk_text(document.content):
                metadata = dict(document.metadata)
                metadata.update(
                    chunk_index=chunk.chunk_index,
                    source_offset=chunk.source_offset,
                )
                pending.append(RecordInput(text=chunk.text, embedding=[], metadata=metadata))
        return pending

    async def ingest_documents(
        self,
        documents: List[Document],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> IngestReport:
        """Chunk, embed and store already loaded documents.

        A failed embedding batch skips only that batch's chunks; a failed
        record skips only that record.

        Args:
            documents: Documents to ingest
            progress_callback: Optional callback(batches_done, batches_total)

        Returns:
            IngestReport with statistics and collected errors
        """
        stats = IngestStats(documents_loaded=len(documents))
        embedding_errors: List[EmbeddingBackendError] = []
        ingestion_errors: List[IngestionError] = []

        pending = self.build_records(documents)
        stats.chunks_created = len(pending)

        batches = [batch for _, batch in iter_batches(pending, self.batch_size)]
        semaphore = asyncio.Semaphore(self.concurrency)
        done = 0

        async def process(batch: List[RecordInput]) -> None:
            nonlocal done
            async with semaphore:
                vectors = await self.embedder.try_embed([r.text for r in batch])

            if isinstance(vectors, EmbeddingBackendError):
                embedding_errors.append(vectors)
                stats.embedding_failures += len(batch)
            else:
                stats.embeddings_generated += len(vectors)
                records = [
                    RecordInput(text=r.text, embedding=v, metadata=r.metadata)
                    for r, v in zip(batch, vectors)
                ]
                errors = await self.store.ingest(records)
                ingestion_errors.extend(errors)
                stats.records_stored += len(records) - len(errors)
                stats.ingestion_errors += len(errors)

            done += 1
            if progress_callback:
                progress_callback(done, len(batches))

        await asyncio.gather(*(process(batch) for batch in batches))

        logger.info("documents_ingested", stats=stats.as_dict())

        return IngestReport(
            stats=stats,
            loader_errors=[],
            embedding_errors=embedding_errors,
            ingestion_errors=ingestion_errors,
        )

    async def ingest_all(
        self,
        rebuild: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> IngestReport:
        """Ingest every supported file in the corpus directory.

        Args:
            rebuild: If True, clear the store before ingesting
            progress_callback: Optional callback(batches_done, batches_total)

        Returns:
            IngestReport for the run

        Raises:
            FileNotFoundError: If the corpus directory doesn't exist
        """
        if self.docs_dir is None:
            raise FileNotFoundError("No documents directory configured")

        logger.info("starting_ingest_all", rebuild=rebuild, docs_dir=str(self.docs_dir))

        loaded = load_directory(self.docs_dir, self.loaders)

        if rebuild:
            await self.store.clear()
        else:
            await self.store.open()

        if not loaded.documents:
            logger.warning("no_documents_found", docs_dir=str(self.docs_dir))

        report = await self.ingest_documents(loaded.documents, progress_callback)
        report.loader_errors = loaded.errors
        report.stats.files_failed = len(loaded.errors)
        report.stats.duplicates_skipped = loaded.duplicates

        db.insert_ingest_run(
            self.store.db_path,
            embedding_model=self.embedder.model,
            embedding_dimension=self.store.dimension,
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            total_chunks=report.stats.records_stored,
            total_documents=report.stats.documents_loaded,
            docs_directory=str(self.docs_dir),
            stats=report.stats.as_dict(),
        )

        logger.info("ingest_all_completed", stats=report.stats.as_dict())

        return report
