"""Retrieval-augmented query engine.

Each query runs an independent state machine:

    EMBEDDING_QUERY -> RETRIEVING -> COMPOSING_PROMPT -> GENERATING -> DONE

with FAILED reachable from every state before DONE. No conversation
memory is carried between queries.
"""
import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import httpx
import structlog

from docchat.errors import (
    DocchatError,
    EmbeddingBackendError,
    GenerationBackendError,
    RetrievalError,
)
from docchat.llm_client import OllamaClient
from docchat.rag.embedder import Embedder
from docchat.rag.store_faiss import FAISSVectorStore, SimilarityResult

logger = structlog.get_logger()


class QueryState(str, enum.Enum):
    EMBEDDING_QUERY = "embedding_query"
    RETRIEVING = "retrieving"
    COMPOSING_PROMPT = "composing_prompt"
    GENERATING = "generating"
    DONE = "done"
    FAILED = "failed"


class TurnRole(str, enum.Enum):
    SYSTEM = "system"
    USER = "user"
    CONTEXT = "context"


@dataclass(frozen=True)
class ConversationTurn:
    role: TurnRole
    content: str


@dataclass
class QueryOutcome:
    """Everything one run of the state machine produced."""

    query: str
    state: QueryState = QueryState.EMBEDDING_QUERY
    answer: Optional[str] = None
    turns: List[ConversationTurn] = field(default_factory=list)
    results: List[SimilarityResult] = field(default_factory=list)
    error: Optional[DocchatError] = None
    failed_in: Optional[QueryState] = None

    @property
    def succeeded(self) -> bool:
        return self.state is QueryState.DONE


@dataclass(frozen=True)
class GenerationConfig:
    model: str
    max_tokens: int = 150
    temperature: float = 0.4
    context_role: str = "assistant"


def compose_turns(
    system_prompt: str, query: str, results: List[SimilarityResult]
) -> List[ConversationTurn]:
    """Build the system, user and context turns for one query.

    Context is the retrieved chunk texts in rank order, newline-separated,
    or an empty string when nothing was retrieved.
    """
    context = "\n".join(result.record.text for result in results)
    return [
        ConversationTurn(TurnRole.SYSTEM, system_prompt),
        ConversationTurn(TurnRole.USER, query),
        ConversationTurn(TurnRole.CONTEXT, context),
    ]


class QueryEngine:
    """Answers questions from retrieved context."""

    def __init__(
        self,
        embedder: Embedder,
        store: FAISSVectorStore,
        llm: OllamaClient,
        generation: GenerationConfig,
        system_prompt: str,
        top_k: int = 4,
        fallback_on_retrieval_error: bool = True,
    ):
        """Initialize the query engine.

        Args:
            embedder: Embedder for the query string
            store: Vector store to search
            llm: Chat backend client
            generation: Chat model and sampling parameters
            system_prompt: Persona / instructions for the system turn
            top_k: Number of chunks to retrieve
            fallback_on_retrieval_error: Continue with empty context when the
                similarity search fails instead of failing the query
        """
        self.embedder = embedder
        self.store = store
        self.llm = llm
        self.generation = generation
        self.system_prompt = system_prompt
        self.top_k = top_k
        self.fallback_on_retrieval_error = fallback_on_retrieval_error

        logger.info(
            "query_engine_initialized",
            chat_model=generation.model,
            top_k=top_k,
            retrieval_fallback=fallback_on_retrieval_error,
        )

    def to_messages(self, turns: List[ConversationTurn]) -> List[Dict[str, str]]:
        """Map turns onto chat backend roles."""
        roles = {
            TurnRole.SYSTEM: "system",
            TurnRole.USER: "user",
            TurnRole.CONTEXT: self.generation.context_role,
        }
        return [{"role": roles[turn.role], "content": turn.content} for turn in turns]

    async def _generate(self, turns: List[ConversationTurn]) -> str:
        try:
            response = await self.llm.chat(
                self.to_messages(turns),
                model=self.generation.model,
                max_tokens=self.generation.max_tokens,
                temperature=self.generation.temperature,
            )
        except httpx.HTTPStatusError as e:
            raise GenerationBackendError(
                f"Chat request failed with status {e.response.status_code}",
                payload={"body": e.response.text},
            ) from e
        except httpx.HTTPError as e:
            raise GenerationBackendError(
                f"Chat request failed: {e}", payload={"error": str(e)}
            ) from e
        except ValueError as e:
            raise GenerationBackendError(f"Chat response is not valid JSON: {e}") from e

        if not isinstance(response, dict):
            raise GenerationBackendError(
                "Chat response is not a JSON object", payload={"body": response}
            )

        message = response.get("message")
        content = message.get("content") if isinstance(message, dict) else None

        if not isinstance(content, str) or not content.strip():
            raise GenerationBackendError("Empty response from chat backend", payload=response)

        return content

    def _fail(self, outcome: QueryOutcome, error: DocchatError) -> QueryOutcome:
        outcome.failed_in = outcome.state
        outcome.state = QueryState.FAILED
        outcome.error = error
        logger.error(
            "query_failed",
            failed_in=outcome.failed_in.value,
            error=str(error),
            error_type=type(error).__name__,
        )
        return outcome

    async def run(self, query: str) -> QueryOutcome:
        """Run one query through the state machine.

        Backend failures end in the FAILED state instead of raising.
        """
        outcome = QueryOutcome(query=query)
        logger.info("query_started", query_length=len(query), top_k=self.top_k)

        try:
            vectors = await self.embedder.embed([query])
        except EmbeddingBackendError as e:
            return self._fail(outcome, e)

        outcome.state = QueryState.RETRIEVING
        try:
            outcome.results = await self.store.query(vectors[0], self.top_k)
        except RetrievalError as e:
            if not self.fallback_on_retrieval_error:
                return self._fail(outcome, e)
            logger.warning("retrieval_failed_using_empty_context", error=str(e))
            outcome.results = []

        outcome.state = QueryState.COMPOSING_PROMPT
        outcome.turns = compose_turns(self.system_prompt, query, outcome.results)

        outcome.state = QueryState.GENERATING
        try:
            outcome.answer = await self._generate(outcome.turns)
        except GenerationBackendError as e:
            return self._fail(outcome, e)

        outcome.state = QueryState.DONE
        logger.info(
            "query_completed",
            results_used=len(outcome.results),
            answer_length=len(outcome.answer),
        )
        return outcome

    async def answer(self, query: str) -> str:
        """Answer a query, raising the backend error on failure."""
        outcome = await self.run(query)
        if outcome.error is not None:
            raise outcome.error
        return outcome.answer
