"""Command implementations for the producer-chat CLI."""

import asyncio
import sys
from typing import Awaitable, Callable, Optional

from ..conversation import ConversationError, ConversationSession
from ..models import Role, SessionSnapshot, SessionState
from ..thread_store import ThreadStore
from ..workflow_client import WorkflowClientError

CONFIRM_COMMAND = "/confirm"
RESET_COMMAND = "/reset"
QUIT_COMMANDS = ("/quit", "/exit")

ReadLine = Callable[[str], Awaitable[Optional[str]]]


async def read_stdin_line(prompt: str) -> Optional[str]:
    """Read one line without blocking the event loop. None on EOF."""
    try:
        return await asyncio.to_thread(input, prompt)
    except EOFError:
        return None


def format_message(role: Role, content: str) -> str:
    label = "you" if role == Role.USER else "producer"
    return f"{label}> {content}"


def format_plan(snapshot: SessionSnapshot) -> Optional[str]:
    """Short plan summary shown while awaiting confirmation."""
    outcome = snapshot.outcome
    if outcome is None or outcome.episode_spec is None:
        return None
    spec = outcome.episode_spec
    lines = [f"Plan: {spec.title or 'Episode plan'}"]
    if spec.duration_minutes:
        lines.append(f"  Duration: {spec.duration_minutes:g} min")
    for index, segment in enumerate(spec.segments, start=1):
        title = segment.title or segment.goal or segment.id or f"Segment {index}"
        minutes = f" ({segment.minutes:g} min)" if segment.minutes else ""
        lines.append(f"  {index}. {title}{minutes}")
    return "\n".join(lines)


def print_transcript(snapshot: SessionSnapshot):
    for message in snapshot.messages:
        print(format_message(message.role, message.content))


async def cmd_chat(
    session: ConversationSession,
    initial_message: Optional[str] = None,
    read_line: ReadLine = read_stdin_line,
) -> int:
    """
    Interactive negotiation loop.

    While a plan awaits confirmation, /confirm confirms it and any other
    text is sent as a revision note.

    Returns:
        Exit code (0 on normal exit)
    """
    await session.start()
    print_transcript(session.snapshot())

    pending = initial_message
    while True:
        snapshot = session.snapshot()
        if snapshot.awaiting_confirmation:
            plan = format_plan(snapshot)
            if plan:
                print(plan)

        if pending is not None:
            line, pending = pending, None
        else:
            prompt = "revise or /confirm> " if snapshot.awaiting_confirmation else "you> "
            line = await read_line(prompt)
        if line is None:
            return 0
        line = line.strip()
        if not line:
            continue
        if line in QUIT_COMMANDS:
            return 0

        before = len(snapshot.messages)
        try:
            if line == RESET_COMMAND:
                session.reset()
                print("Started a new conversation.")
                continue
            if snapshot.awaiting_confirmation:
                if line == CONFIRM_COMMAND:
                    await session.confirm()
                else:
                    await session.revise(line)
            else:
                await session.send(line)
        except (ConversationError, WorkflowClientError) as e:
            print(f"Error: {e}", file=sys.stderr)
            continue

        after = session.snapshot()
        # Confirm updates the last assistant message in place.
        changed = after.messages[before:] or after.messages[-1:]
        for message in changed:
            if message.role == Role.ASSISTANT:
                print(format_message(message.role, message.content))
        if after.state == SessionState.CONFIRMED:
            print("Plan confirmed. Your episode is being produced.")


async def cmd_history(session: ConversationSession) -> int:
    """Print the stored thread's transcript. Returns 1 when nothing is stored."""
    await session.start()
    snapshot = session.snapshot()
    if not snapshot.thread_id:
        print("No stored conversation.")
        return 1
    print(f"Thread {snapshot.thread_id}")
    print_transcript(snapshot)
    plan = format_plan(snapshot)
    if plan:
        print(plan)
    return 0


def cmd_forget(store: ThreadStore) -> int:
    """Clear the stored thread id."""
    if store.load() is None:
        print("No stored conversation.")
        return 0
    if not store.clear():
        print("Error: could not clear stored conversation", file=sys.stderr)
        return 1
    print("Stored conversation cleared.")
    return 0
