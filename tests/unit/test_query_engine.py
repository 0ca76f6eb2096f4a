"""Tests for the retrieval-augmented query engine."""
import httpx
import pytest

from docchat.errors import EmbeddingBackendError, GenerationBackendError, RetrievalError
from docchat.rag.query_engine import (
    GenerationConfig,
    QueryEngine,
    QueryState,
    TurnRole,
    compose_turns,
)
from docchat.rag.store_faiss import RecordInput, SimilarityResult, StoredRecord

CORPUS = ["The sky is blue.", "Water boils at 100C."]


async def _ingest(embedder, store, texts):
    vectors = await embedder.embed(texts)
    errors = await store.ingest(
        [RecordInput(text=t, embedding=v) for t, v in zip(texts, vectors)]
    )
    assert errors == []


@pytest.mark.asyncio
async def test_sky_question_retrieves_sky_sentence_first(engine, embedder, store, ollama_stub):
    await _ingest(embedder, store, CORPUS)

    outcome = await engine.run("What color is the sky?")

    assert outcome.state is QueryState.DONE
    assert outcome.answer == "The sky is blue."
    assert [r.record.text for r in outcome.results] == CORPUS
    assert outcome.results[0].score > outcome.results[1].score

    context = outcome.turns[2]
    assert context.role is TurnRole.CONTEXT
    assert context.content == "The sky is blue.\nWater boils at 100C."
    assert context.content.index("The sky is blue.") < context.content.index("Water")


@pytest.mark.asyncio
async def test_chat_request_carries_turns_and_generation_params(engine, embedder, store, ollama_stub):
    await _ingest(embedder, store, CORPUS)

    await engine.run("What color is the sky?")

    chat = ollama_stub.bodies("/api/chat")[0]
    assert chat["model"] == "llama3.1:8b"
    assert chat["stream"] is False
    assert chat["options"] == {"num_predict": 150, "temperature": 0.4}
    assert [m["role"] for m in chat["messages"]] == ["system", "user", "assistant"]
    assert chat["messages"][1]["content"] == "What color is the sky?"
    assert chat["messages"][2]["content"].startswith("The sky is blue.")


@pytest.mark.asyncio
async def test_empty_store_generates_with_empty_context(engine, ollama_stub):
    outcome = await engine.run("Anything there?")

    assert outcome.state is QueryState.DONE
    assert outcome.results == []
    assert outcome.turns[2].content == ""
    assert len(ollama_stub.bodies("/api/chat")) == 1


@pytest.mark.asyncio
async def test_embedding_failure_stops_before_retrieval(engine, ollama_stub):
    ollama_stub.embed_fn = lambda text: []

    outcome = await engine.run("What color is the sky?")

    assert outcome.state is QueryState.FAILED
    assert outcome.failed_in is QueryState.EMBEDDING_QUERY
    assert isinstance(outcome.error, EmbeddingBackendError)
    assert ollama_stub.bodies("/api/chat") == []


@pytest.mark.asyncio
async def test_generation_failure(engine, ollama_stub):
    ollama_stub.chat_status = 500

    outcome = await engine.run("What color is the sky?")

    assert outcome.state is QueryState.FAILED
    assert outcome.failed_in is QueryState.GENERATING
    assert isinstance(outcome.error, GenerationBackendError)
    assert outcome.answer is None

    with pytest.raises(GenerationBackendError):
        await engine.answer("What color is the sky?")


@pytest.mark.asyncio
async def test_blank_reply_is_a_generation_failure(engine, ollama_stub):
    ollama_stub.answer = "   "

    outcome = await engine.run("Hello?")

    assert isinstance(outcome.error, GenerationBackendError)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [{"message": "oops"}, {"message": None}, [], "oops"],
)
async def test_malformed_chat_reply_is_a_generation_failure(engine, ollama_stub, body):
    ollama_stub.chat_response = lambda: httpx.Response(200, json=body)

    outcome = await engine.run("What color is the sky?")

    assert outcome.state is QueryState.FAILED
    assert outcome.failed_in is QueryState.GENERATING
    assert isinstance(outcome.error, GenerationBackendError)


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{"embeddings": 5}, [], "oops"])
async def test_malformed_embedding_reply_fails_the_query(engine, ollama_stub, body):
    ollama_stub.embed_response = lambda inputs: httpx.Response(200, json=body)

    outcome = await engine.run("What color is the sky?")

    assert outcome.failed_in is QueryState.EMBEDDING_QUERY
    assert isinstance(outcome.error, EmbeddingBackendError)
    assert ollama_stub.paths() == ["/api/embed"]


class _BrokenStore:
    async def query(self, query_embedding, top_k):
        raise RetrievalError("index unavailable")


@pytest.mark.asyncio
@pytest.mark.parametrize("fallback,expected", [(True, QueryState.DONE), (False, QueryState.FAILED)])
async def test_retrieval_error_policy(embedder, client, fallback, expected):
    engine = QueryEngine(
        embedder=embedder,
        store=_BrokenStore(),
        llm=client,
        generation=GenerationConfig(model="llama3.1:8b"),
        system_prompt="persona",
        fallback_on_retrieval_error=fallback,
    )

    outcome = await engine.run("What color is the sky?")

    assert outcome.state is expected
    if fallback:
        assert outcome.turns[2].content == ""
    else:
        assert outcome.failed_in is QueryState.RETRIEVING
        assert isinstance(outcome.error, RetrievalError)


@pytest.mark.asyncio
async def test_answer_returns_text(engine, ollama_stub):
    ollama_stub.answer = "Blue."
    assert await engine.answer("What color is the sky?") == "Blue."


@pytest.mark.asyncio
async def test_queries_are_independent(engine, ollama_stub):
    await engine.run("first question")
    await engine.run("second question")

    second = ollama_stub.bodies("/api/chat")[1]["messages"]
    assert len(second) == 3
    assert all("first question" not in m["content"] for m in second)


def test_compose_turns_orders_context_by_rank():
    results = [
        SimilarityResult(StoredRecord(1, "best", [1.0], {}), 0.9),
        SimilarityResult(StoredRecord(2, "second", [1.0], {}), 0.5),
    ]

    turns = compose_turns("persona", "question", results)

    assert [t.role for t in turns] == [TurnRole.SYSTEM, TurnRole.USER, TurnRole.CONTEXT]
    assert [t.content for t in turns] == ["persona", "question", "best\nsecond"]


def test_context_role_is_configurable(embedder, store, client):
    engine = QueryEngine(
        embedder=embedder,
        store=store,
        llm=client,
        generation=GenerationConfig(model="m", context_role="user"),
        system_prompt="persona",
    )

    messages = engine.to_messages(compose_turns("persona", "q", []))

    assert [m["role"] for m in messages] == ["system", "user", "user"]
