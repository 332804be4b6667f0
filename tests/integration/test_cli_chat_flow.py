"""
Integration tests driving the producer-chat console entry point end to end.

The real argparse entry, config loading, sqlite thread store, session and
httpx client run together; only the engine sits behind MockTransport and
stdin is scripted.
"""

import functools

import httpx
import pytest
import yaml
from unittest.mock import patch

from producer_chat.cli import main as cli_main
from producer_chat.thread_store import ThreadStore
from producer_chat.workflow_client import WorkflowClient

from conftest import CONFIRM_PATH, RESUME_PATH, STREAM_PATH, ready_outcome, step, stream_response


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "api": {"base_url": "http://engine.test"},
        "storage": {"db_path": str(tmp_path / "threads.db")},
    }))
    return path


@pytest.fixture
def stdin_lines(monkeypatch):
    """Script what input() returns; EOF once the lines run out."""
    lines = []

    def fake_input(prompt=""):
        if not lines:
            raise EOFError
        return lines.pop(0)

    monkeypatch.setattr("builtins.input", fake_input)
    return lines


def run_cli(engine, config_file, *args):
    argv = ["--config", str(config_file), "--token", "tok-123", "--identity", "listener-1", *args]
    client_factory = functools.partial(WorkflowClient, transport=engine.transport)
    with patch("producer_chat.cli.main.WorkflowClient", new=client_factory):
        with pytest.raises(SystemExit) as excinfo:
            cli_main.main(argv)
    return excinfo.value.code


def test_chat_confirm_then_history_after_restart(engine, config_file, tmp_path, stdin_lines, capsys, monkeypatch):
    monkeypatch.delenv("PRODUCER_CHAT_API_URL", raising=False)
    engine.queue(STREAM_PATH, stream_response(
        step("start", threadId="thread-42"),
        step(outcome=ready_outcome()),
        run_id="run-1",
    ))
    engine.queue(CONFIRM_PATH, httpx.Response(200, json={"planId": "p-1"}))
    engine.queue(RESUME_PATH, stream_response({"type": "finish"}))
    stdin_lines.extend(["/confirm"])

    assert run_cli(engine, config_file, "chat", "--message", "AI news, 10 minutes") == 0

    out = capsys.readouterr().out
    assert "producer> Here is the plan: AI news in 10" in out
    assert "Plan confirmed." in out
    assert engine.requests[0].headers["Authorization"] == "Bearer tok-123"
    assert engine.bodies(RESUME_PATH)[0]["threadId"] == "thread-42"

    store = ThreadStore(str(tmp_path / "threads.db"), identity="listener-1")
    assert store.load() == "thread-42"
    store.close()

    engine.queue("/producer/chat/thread/thread-42", httpx.Response(200, json={
        "messages": [
            {"role": "user", "content": "AI news, 10 minutes"},
            {"role": "assistant", "content": "Here is the plan: AI news in 10"},
        ],
    }))
    assert run_cli(engine, config_file, "history") == 0
    assert "Thread thread-42" in capsys.readouterr().out

    assert run_cli(engine, config_file, "forget") == 0
    assert "Stored conversation cleared." in capsys.readouterr().out


def test_chat_engine_error_keeps_loop_alive(engine, config_file, stdin_lines, capsys, monkeypatch):
    monkeypatch.delenv("PRODUCER_CHAT_API_URL", raising=False)
    engine.queue(STREAM_PATH, httpx.Response(402, text="Not enough remaining minutes"))
    engine.queue(STREAM_PATH, stream_response(
        step(outcome={"status": "NEEDS_USER_REPLY", "nextQuestion": "What tone?"}),
    ))
    stdin_lines.extend(["AI news", "AI news again", "/quit"])

    assert run_cli(engine, config_file, "chat") == 0

    captured = capsys.readouterr()
    assert "Error: Not enough remaining minutes" in captured.err
    assert "producer> What tone?" in captured.out
