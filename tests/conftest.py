"""Shared fixtures: an in-process Ollama stand-in and wired components."""
import json
import re
from typing import Callable, List, Optional

import httpx
import pytest

from docchat.llm_client import OllamaClient
from docchat.rag.chunker import TextChunker
from docchat.rag.embedder import Embedder
from docchat.rag.query_engine import GenerationConfig, QueryEngine
from docchat.rag.store_faiss import FAISSVectorStore

VOCABULARY = [
    "sky", "blue", "color", "water", "boils", "100c",
    "cat", "dog", "red", "green", "tree", "sun",
]


def keyword_embedding(text: str) -> List[float]:
    """Bag-of-words vector over a tiny vocabulary plus a small bias term."""
    words = re.findall(r"[a-z0-9]+", text.lower())
    return [float(words.count(term)) for term in VOCABULARY] + [0.01]


class OllamaStub:
    """Fake Ollama server served through httpx.MockTransport."""

    def __init__(self):
        self.requests: List[tuple] = []
        self.embed_fn: Callable[[str], List[float]] = keyword_embedding
        self.embed_response: Optional[Callable[[List[str]], httpx.Response]] = None
        self.answer = "The sky is blue."
        self.chat_status = 200
        self.chat_response: Optional[Callable[[], httpx.Response]] = None
        self.models = ["llama3.1:8b", "nomic-embed-text:latest"]

    def paths(self) -> List[str]:
        return [path for path, _ in self.requests]

    def bodies(self, path: str) -> List[dict]:
        return [body for p, body in self.requests if p == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        self.requests.append((request.url.path, body))

        if request.url.path == "/api/embed":
            if self.embed_response is not None:
                return self.embed_response(body["input"])
            return httpx.Response(
                200, json={"embeddings": [self.embed_fn(t) for t in body["input"]]}
            )

        if request.url.path == "/api/chat":
            if self.chat_response is not None:
                return self.chat_response()
            if self.chat_status != 200:
                return httpx.Response(self.chat_status, json={"error": "model crashed"})
            return httpx.Response(
                200,
                json={"message": {"role": "assistant", "content": self.answer}, "done": True},
            )

        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": m} for m in self.models]})

        return httpx.Response(404, json={"error": "not found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def ollama_stub() -> OllamaStub:
    return OllamaStub()


@pytest.fixture
def client(ollama_stub) -> OllamaClient:
    return OllamaClient("http://ollama.test", timeout=5.0, transport=ollama_stub.transport)


@pytest.fixture
def embedder(client) -> Embedder:
    return Embedder(client, model="nomic-embed-text:latest")


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "data" / "docchat.sqlite"


@pytest.fixture
def store(db_path) -> FAISSVectorStore:
    return FAISSVectorStore(db_path, max_content_chars=500)


@pytest.fixture
def chunker() -> TextChunker:
    return TextChunker(chunk_size=200, chunk_overlap=20)


@pytest.fixture
def engine(embedder, store, client) -> QueryEngine:
    return QueryEngine(
        embedder=embedder,
        store=store,
        llm=client,
        generation=GenerationConfig(model="llama3.1:8b", max_tokens=150, temperature=0.4),
        system_prompt="You answer questions about the provided documents.",
        top_k=4,
    )
