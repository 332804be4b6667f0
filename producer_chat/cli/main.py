"""Main entry point for the producer-chat CLI."""

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

from ..config import ProducerChatConfig, load_config
from ..conversation import ConversationSession
from ..thread_store import ThreadStore
from ..workflow_client import WorkflowClient
from . import commands


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="producer-chat",
        description="Producer chat - negotiate an episode plan with the workflow engine",
    )
    parser.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    parser.add_argument("--token", default=None, help="Bearer token (default: $PRODUCER_CHAT_TOKEN)")
    parser.add_argument("--identity", default=None, help="Identity the stored thread belongs to (default: $PRODUCER_CHAT_IDENTITY)")
    parser.add_argument("--api-url", default=None, help="Workflow API base URL override")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # producer-chat chat [--message TEXT]
    chat_parser = subparsers.add_parser("chat", help="Start or continue a conversation")
    chat_parser.add_argument("--message", "-m", default=None, help="Send this message first")

    # producer-chat history
    subparsers.add_parser("history", help="Show the stored conversation")

    # producer-chat forget
    subparsers.add_parser("forget", help="Forget the stored conversation")

    return parser


async def _run(args: argparse.Namespace, config: ProducerChatConfig, token: str, identity: str) -> int:
    client = WorkflowClient(config, token_provider=lambda: token)
    store = ThreadStore(config.db_path, identity=identity, client=client)
    try:
        if args.command == "forget":
            return commands.cmd_forget(store)
        session = ConversationSession(client, thread_store=store, greeting=config.greeting)
        if args.command == "history":
            return await commands.cmd_history(session)
        return await commands.cmd_chat(session, initial_message=args.message)
    finally:
        await client.aclose()
        store.close()


def main(argv: Optional[list] = None):
    """Main entry point for producer-chat CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = ProducerChatConfig.from_dict(load_config(args.config))
    if args.api_url:
        config.api_base_url = args.api_url.rstrip("/")

    token = args.token or os.environ.get("PRODUCER_CHAT_TOKEN")
    identity = args.identity or os.environ.get("PRODUCER_CHAT_IDENTITY")
    if not token:
        print("Error: no bearer token (use --token or PRODUCER_CHAT_TOKEN)", file=sys.stderr)
        sys.exit(1)
    if not identity:
        print("Error: no identity (use --identity or PRODUCER_CHAT_IDENTITY)", file=sys.stderr)
        sys.exit(1)

    try:
        sys.exit(asyncio.run(_run(args, config, token, identity)))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
