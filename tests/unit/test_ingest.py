"""Tests for the ingest pipeline."""
from unittest.mock import AsyncMock

import httpx
import pytest

from docchat import db
from docchat.errors import IngestionError
from docchat.rag.chunker import TextChunker
from docchat.rag.ingest import IngestPipeline
from docchat.rag.loaders import Document
from tests.conftest import keyword_embedding


def _pipeline(embedder, store, docs_dir=None, batch_size=4, chunk_size=200, overlap=20):
    return IngestPipeline(
        embedder=embedder,
        store=store,
        chunker=TextChunker(chunk_size=chunk_size, chunk_overlap=overlap),
        docs_dir=docs_dir,
        batch_size=batch_size,
        concurrency=2,
    )


@pytest.mark.asyncio
async def test_one_poisoned_record_among_ten(embedder, store, ollama_stub):
    # The store rejects zero vectors, so this chunk fails at persistence time
    ollama_stub.embed_fn = lambda text: (
        [0.0] * 13 if "poison" in text else keyword_embedding(text)
    )
    documents = [Document(content=f"note {i} about the sky") for i in range(9)]
    documents.insert(6, Document(content="poison pill"))

    report = await _pipeline(embedder, store).ingest_documents(documents)

    assert report.stats.chunks_created == 10
    assert report.stats.records_stored == 9
    assert report.stats.ingestion_errors == 1
    assert len(report.ingestion_errors) == 1
    assert isinstance(report.ingestion_errors[0], IngestionError)
    assert report.ingestion_errors[0].record.text == "poison pill"
    assert store.vector_count == 9


@pytest.mark.asyncio
async def test_failed_embedding_batch_skips_only_its_chunks(embedder, store, ollama_stub):
    def respond(inputs):
        if any("broken" in text for text in inputs):
            return httpx.Response(500, json={"error": "boom"})
        return httpx.Response(200, json={"embeddings": [keyword_embedding(t) for t in inputs]})

    ollama_stub.embed_response = respond
    documents = [Document(content=text) for text in ("blue sky", "broken", "green tree")]

    report = await _pipeline(embedder, store, batch_size=1).ingest_documents(documents)

    assert report.stats.embedding_failures == 1
    assert len(report.embedding_errors) == 1
    assert report.stats.records_stored == 2
    assert store.vector_count == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("bad_body", [{"embeddings": 5}, [], "oops"])
async def test_malformed_embedding_batch_is_skipped(embedder, store, ollama_stub, bad_body):
    def respond(inputs):
        if any("broken" in text for text in inputs):
            return httpx.Response(200, json=bad_body)
        return httpx.Response(200, json={"embeddings": [keyword_embedding(t) for t in inputs]})

    ollama_stub.embed_response = respond
    documents = [Document(content=text) for text in ("blue sky", "broken", "green tree")]

    report = await _pipeline(embedder, store, batch_size=1).ingest_documents(documents)

    assert report.stats.embedding_failures == 1
    assert report.stats.records_stored == 2


@pytest.mark.asyncio
async def test_batches_go_through_embedder_batch_helper(embedder, store, monkeypatch):
    spy = AsyncMock(wraps=embedder.try_embed)
    monkeypatch.setattr(embedder, "try_embed", spy)
    documents = [Document(content=f"green tree {i}") for i in range(5)]

    report = await _pipeline(embedder, store, batch_size=2).ingest_documents(documents)

    assert sorted(len(call.args[0]) for call in spy.await_args_list) == [1, 2, 2]
    assert report.stats.records_stored == 5


@pytest.mark.asyncio
async def test_chunk_metadata_recorded(embedder, store):
    text = "sky " * 120
    document = Document(content=text, metadata={"source": "sky.txt"})

    report = await _pipeline(embedder, store, chunk_size=200, overlap=20).ingest_documents([document])

    rows = db.iter_documents(store.db_path)
    assert report.stats.records_stored == len(rows) == 3
    assert sorted(r["metadata"]["chunk_index"] for r in rows) == [0, 1, 2]
    assert sorted(r["metadata"]["source_offset"] for r in rows) == [0, 180, 360]
    assert all(r["metadata"]["source"] == "sky.txt" for r in rows)


@pytest.mark.asyncio
async def test_progress_callback_reports_each_batch(embedder, store):
    calls = []
    documents = [Document(content=f"tree number {i}") for i in range(5)]

    await _pipeline(embedder, store, batch_size=2).ingest_documents(
        documents, progress_callback=lambda done, total: calls.append((done, total))
    )

    assert sorted(calls) == [(1, 3), (2, 3), (3, 3)]


@pytest.mark.asyncio
async def test_ingest_all_loads_directory_and_records_run(tmp_path, embedder, store):
    docs = tmp_path / "docs"
    (docs / "transcripts").mkdir(parents=True)
    (docs / "transcripts" / "talk.txt").write_text("The sky is blue.", encoding="utf-8")
    (docs / "notes.md").write_text(
        "---\ntitle: Boiling\n---\nWater boils at 100C.\n", encoding="utf-8"
    )
    (docs / "broken.pdf").write_bytes(b"this is not a pdf")
    (docs / "ignored.csv").write_text("a,b\n", encoding="utf-8")

    report = await _pipeline(embedder, store, docs_dir=docs).ingest_all()

    assert report.stats.documents_loaded == 2
    assert report.stats.files_failed == 1
    assert report.loader_errors[0].path.name == "broken.pdf"
    assert report.stats.records_stored == 2

    run = db.get_latest_ingest_run(store.db_path)
    assert run["total_chunks"] == 2
    assert run["chunk_size"] == 200
    assert run["stats"]["files_failed"] == 1


@pytest.mark.asyncio
async def test_reingest_appends_and_rebuild_clears(tmp_path, embedder, store):
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "a.txt").write_text("The sky is blue.", encoding="utf-8")
    pipeline = _pipeline(embedder, store, docs_dir=docs)

    await pipeline.ingest_all()
    await pipeline.ingest_all()
    assert store.vector_count == 2

    await pipeline.ingest_all(rebuild=True)
    assert store.vector_count == 1
    assert db.get_document_count(store.db_path) == 1


@pytest.mark.asyncio
async def test_missing_docs_dir_is_fatal(tmp_path, embedder, store):
    with pytest.raises(FileNotFoundError):
        await _pipeline(embedder, store, docs_dir=tmp_path / "missing").ingest_all()
