"""Unit tests for the producer-chat CLI."""

import httpx
import pytest

from producer_chat.cli import main as cli_main
from producer_chat.cli.commands import cmd_chat, cmd_forget, cmd_history, format_plan
from producer_chat.models import SessionState

from conftest import CONFIRM_PATH, RESUME_PATH, STREAM_PATH, ready_outcome, step, stream_response


def scripted(*lines):
    """read_line stand-in that replays lines, then reports EOF."""
    remaining = list(lines)
    prompts = []

    async def read_line(prompt):
        prompts.append(prompt)
        return remaining.pop(0) if remaining else None

    read_line.prompts = prompts
    return read_line


class TestParser:

    def test_chat_with_message(self):
        args = cli_main.build_parser().parse_args(["--token", "t", "chat", "-m", "AI news"])
        assert args.command == "chat"
        assert args.message == "AI news"
        assert args.token == "t"

    def test_history_and_forget(self):
        parser = cli_main.build_parser()
        assert parser.parse_args(["history"]).command == "history"
        assert parser.parse_args(["forget"]).command == "forget"

    def test_no_command_exits_1(self):
        with pytest.raises(SystemExit) as excinfo:
            cli_main.main([])
        assert excinfo.value.code == 1

    def test_missing_token_exits_1(self, monkeypatch, tmp_path, capsys):
        monkeypatch.delenv("PRODUCER_CHAT_TOKEN", raising=False)
        with pytest.raises(SystemExit) as excinfo:
            cli_main.main(["--config", str(tmp_path / "none.yaml"), "--identity", "me", "history"])
        assert excinfo.value.code == 1
        assert "no bearer token" in capsys.readouterr().err

    def test_missing_identity_exits_1(self, monkeypatch, tmp_path, capsys):
        monkeypatch.delenv("PRODUCER_CHAT_IDENTITY", raising=False)
        with pytest.raises(SystemExit) as excinfo:
            cli_main.main(["--config", str(tmp_path / "none.yaml"), "--token", "t", "history"])
        assert excinfo.value.code == 1
        assert "no identity" in capsys.readouterr().err


class TestChat:

    @pytest.mark.asyncio
    async def test_negotiate_and_confirm(self, session, engine, capsys):
        engine.queue(STREAM_PATH, stream_response(step(outcome=ready_outcome()), run_id="run-1"))
        engine.queue(CONFIRM_PATH, httpx.Response(200, json={}))
        engine.queue(RESUME_PATH, stream_response({"type": "finish"}))
        read_line = scripted("/confirm")

        code = await cmd_chat(session, initial_message="AI news, 10 minutes", read_line=read_line)

        assert code == 0
        assert session.state == SessionState.CONFIRMED
        out = capsys.readouterr().out
        assert "producer> Here is the plan: AI news in 10" in out
        assert "Plan: AI news in 10" in out
        assert "1. Model releases (5 min)" in out
        assert "Plan confirmed." in out
        assert read_line.prompts[0] == "revise or /confirm> "

    @pytest.mark.asyncio
    async def test_text_while_awaiting_is_a_revision(self, session, engine):
        engine.queue(STREAM_PATH, stream_response(step(outcome=ready_outcome()), run_id="run-1"))
        engine.queue(RESUME_PATH, stream_response(
            step(outcome={"status": "NEEDS_USER_REPLY", "nextQuestion": "Which topics?"}),
        ))

        await cmd_chat(session, initial_message="AI news", read_line=scripted("shorter please", "/quit"))

        body = engine.bodies(RESUME_PATH)[0]
        assert body["confirmed"] is False
        assert body["userMessage"] == "shorter please"
        assert session.state == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_errors_are_printed_and_loop_continues(self, session, engine, capsys):
        engine.queue(STREAM_PATH, httpx.Response(402, text="Not enough remaining minutes"))

        code = await cmd_chat(session, read_line=scripted("hi", "/exit"))

        assert code == 0
        err = capsys.readouterr().err
        assert "Error: Not enough remaining minutes" in err

    @pytest.mark.asyncio
    async def test_reset_command(self, session, engine, thread_store, capsys):
        engine.queue(STREAM_PATH, stream_response(
            step(outcome={"status": "NEEDS_USER_REPLY", "nextQuestion": "What tone?"}),
            run_id="run-1",
        ))

        await cmd_chat(session, initial_message="hi", read_line=scripted("/reset"))

        assert "Started a new conversation." in capsys.readouterr().out
        assert session.snapshot().thread_id is None
        assert thread_store.load() is None


class TestHistoryAndForget:

    @pytest.mark.asyncio
    async def test_history_without_stored_thread(self, session, capsys):
        assert await cmd_history(session) == 1
        assert "No stored conversation." in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_history_prints_transcript(self, session, engine, thread_store, capsys):
        thread_store.persist("t-1")
        engine.queue("/producer/chat/thread/t-1", httpx.Response(200, json={
            "messages": [
                {"role": "user", "content": "AI news"},
                {"role": "assistant", "content": "Here is the plan"},
            ],
            "latestOutcome": ready_outcome(),
        }))

        assert await cmd_history(session) == 0

        out = capsys.readouterr().out
        assert "Thread t-1" in out
        assert "you> AI news" in out
        assert "producer> Here is the plan" in out
        assert "Plan: AI news in 10" in out

    def test_forget(self, thread_store, capsys):
        assert cmd_forget(thread_store) == 0
        assert "No stored conversation." in capsys.readouterr().out

        thread_store.persist("t-1")
        assert cmd_forget(thread_store) == 0
        assert thread_store.load() is None
        assert "Stored conversation cleared." in capsys.readouterr().out


def test_format_plan_without_spec(session):
    assert format_plan(session.snapshot()) is None
