"""Command-line chat over the ingested document corpus.

Usage:
    docchat                  # Chat against the existing store
    docchat --ingest         # Ingest the documents directory, then chat
    docchat --ingest --rebuild --docs-dir ./docs
"""
import argparse
import asyncio
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, List, Optional

import httpx
import structlog

from docchat.config import Settings
from docchat.errors import InvalidConfiguration
from docchat.llm_client import OllamaClient
from docchat.log_config import configure_logging
from docchat.rag.chunker import TextChunker
from docchat.rag.embedder import Embedder
from docchat.rag.ingest import IngestPipeline
from docchat.rag.query_engine import GenerationConfig, QueryEngine
from docchat.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()

EXIT_SENTINEL = "exit"
PROMPT = "Ask a question: "


@dataclass
class Components:
    """Everything a session needs, built once from Settings."""

    settings: Settings
    client: OllamaClient
    embedder: Embedder
    store: FAISSVectorStore
    chunker: TextChunker
    engine: QueryEngine

    def ingest_pipeline(self) -> IngestPipeline:
        return IngestPipeline(
            embedder=self.embedder,
            store=self.store,
            chunker=self.chunker,
            docs_dir=self.settings.docs_dir,
            batch_size=self.settings.embed_batch_size,
            concurrency=self.settings.ingest_concurrency,
        )


def build_components(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> Components:
    """Wire clients, store and engine from validated settings.

    Raises:
        InvalidConfiguration: If chunk parameters are invalid
    """
    client = OllamaClient(
        settings.ollama_base_url,
        timeout=settings.request_timeout,
        transport=transport,
    )
    embedder = Embedder(client, model=settings.embedding_model)
    store = FAISSVectorStore(
        settings.db_path,
        dimension=settings.embedding_dimension,
        max_content_chars=settings.max_content_chars,
    )
    chunker = TextChunker(settings.chunk_size, settings.chunk_overlap)
    engine = QueryEngine(
        embedder=embedder,
        store=store,
        llm=client,
        generation=GenerationConfig(
            model=settings.chat_model,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            context_role=settings.context_role,
        ),
        system_prompt=settings.system_prompt,
        top_k=settings.top_k,
        fallback_on_retrieval_error=settings.retrieval_fallback,
    )
    return Components(settings, client, embedder, store, chunker, engine)


async def run_chat_loop(
    engine: QueryEngine,
    read_line: Callable[[str], str] = input,
    write: Callable[[str], None] = print,
) -> int:
    """Read questions until the exit sentinel or end of input.

    Failed turns are reported and the loop continues.

    Returns:
        Process exit code (0)
    """
    write(f"Starting chat. Type '{EXIT_SENTINEL}' to end the chat.")

    while True:
        try:
            line = await asyncio.to_thread(read_line, PROMPT)
        except EOFError:
            write("")
            break

        question = line.strip()

        if question.lower() == EXIT_SENTINEL:
            break
        if not question:
            continue

        outcome = await engine.run(question)

        if outcome.succeeded:
            write(f"AI: {outcome.answer}")
        else:
            write(f"Error: {outcome.error}")

    write("Ending chat. Goodbye!")
    logger.info("chat_session_ended")
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="docchat",
        description="Ask questions about your documents",
    )
    parser.add_argument(
        "--ingest",
        action="store_true",
        help="Ingest the documents directory before starting the chat",
    )
    parser.add_argument(
        "--rebuild",
        action="store_true",
        help="Clear the store before ingesting (implies --ingest)",
    )
    parser.add_argument(
        "--docs-dir",
        type=Path,
        default=None,
        help="Documents directory (default: DOCS_DIR)",
    )
    return parser.parse_args(argv)


async def main(argv: Optional[List[str]] = None) -> int:
    """Entry point; returns the process exit code."""
    args = parse_args(argv)

    try:
        settings = Settings.from_env()
        if args.docs_dir is not None:
            settings = replace(settings, docs_dir=args.docs_dir)
        settings.validate()
    except InvalidConfiguration as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level, settings.log_json)

    try:
        components = build_components(settings)

        if args.ingest or args.rebuild:
            report = await components.ingest_pipeline().ingest_all(rebuild=args.rebuild)
            stats = report.stats
            print(
                f"Ingested {stats.records_stored} chunks from "
                f"{stats.documents_loaded} documents "
                f"({stats.files_failed} files failed, "
                f"{stats.embedding_failures + stats.ingestion_errors} chunks skipped)."
            )
        else:
            await components.store.open()

    except InvalidConfiguration as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except FileNotFoundError as e:
        logger.error("documents_directory_missing", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return await run_chat_loop(components.engine)


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nEnding chat. Goodbye!")
        sys.exit(0)


if __name__ == "__main__":
    cli()
