"""Tests for the interactive chat loop and CLI entry point."""
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from docchat import main as cli_main
from docchat.config import Settings
from docchat.main import build_components, run_chat_loop
from docchat.rag.query_engine import QueryOutcome, QueryState


def _scripted(*lines):
    remaining = list(lines)

    def read_line(prompt):
        if not remaining:
            raise EOFError
        return remaining.pop(0)

    return read_line


@pytest.mark.asyncio
@pytest.mark.parametrize("sentinel", ["exit", "EXIT", "  Exit  "])
async def test_exit_sentinel_ends_loop_without_embedding(engine, ollama_stub, sentinel):
    output = []

    code = await run_chat_loop(engine, read_line=_scripted(sentinel, "never asked"), write=output.append)

    assert code == 0
    assert ollama_stub.requests == []
    assert output[-1] == "Ending chat. Goodbye!"


@pytest.mark.asyncio
async def test_question_answered_then_exit(engine, ollama_stub):
    output = []
    ollama_stub.answer = "It is blue."

    code = await run_chat_loop(
        engine, read_line=_scripted("What color is the sky?", "", "exit"), write=output.append
    )

    assert code == 0
    assert "AI: It is blue." in output
    assert ollama_stub.paths() == ["/api/embed", "/api/chat"]


@pytest.mark.asyncio
async def test_failed_turn_reported_and_loop_continues():
    failed = QueryOutcome(query="q1", state=QueryState.FAILED, error=RuntimeError("backend down"))
    done = QueryOutcome(query="q2", state=QueryState.DONE, answer="fine")
    engine = MagicMock()
    engine.run = AsyncMock(side_effect=[failed, done])
    output = []

    await run_chat_loop(engine, read_line=_scripted("q1", "q2", "exit"), write=output.append)

    assert "Error: backend down" in output
    assert "AI: fine" in output
    assert engine.run.await_count == 2


@pytest.mark.asyncio
async def test_malformed_chat_reply_does_not_end_session(engine, ollama_stub):
    replies = [
        httpx.Response(200, json={"message": "oops"}),
        httpx.Response(200, json={"message": {"role": "assistant", "content": "Blue."}}),
    ]
    ollama_stub.chat_response = lambda: replies.pop(0)
    output = []

    code = await run_chat_loop(engine, read_line=_scripted("q1", "q2", "exit"), write=output.append)

    assert code == 0
    assert any(line.startswith("Error: ") for line in output)
    assert "AI: Blue." in output


@pytest.mark.asyncio
async def test_end_of_input_ends_loop():
    engine = MagicMock()
    engine.run = AsyncMock()

    code = await run_chat_loop(engine, read_line=_scripted(), write=lambda line: None)

    assert code == 0
    engine.run.assert_not_awaited()


@pytest.mark.asyncio
async def test_invalid_chunk_configuration_aborts_startup(monkeypatch, capsys):
    monkeypatch.setenv("CHUNK_SIZE", "100")
    monkeypatch.setenv("CHUNK_OVERLAP", "100")

    code = await cli_main.main([])

    assert code == 2
    assert "CHUNK_OVERLAP" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_missing_docs_dir_with_ingest_exits_with_error(monkeypatch, tmp_path):
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("DB_PATH", raising=False)
    monkeypatch.setattr(cli_main, "configure_logging", lambda *args: None)

    code = await cli_main.main(["--ingest", "--docs-dir", str(tmp_path / "missing")])

    assert code == 1


@pytest.mark.asyncio
async def test_build_components_shares_one_store(tmp_path, ollama_stub):
    settings = Settings(data_dir=tmp_path, embedding_dimension=13)

    components = build_components(settings, transport=ollama_stub.transport)

    assert components.engine.store is components.store
    assert components.ingest_pipeline().store is components.store
    assert components.store.db_path == tmp_path / "docchat.sqlite"
