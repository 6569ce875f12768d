"""Command-line entry point for talking to the chat backend."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from typing import Any

from pydantic import ValidationError

from .api_client import ChatApiClient
from .auth import EnvTokenProvider, StaticTokenProvider
from .config import ClientConfig, load_config
from .errors import AuthTokenUnavailable, ChatApiError
from .logging_utils import setup_logging
from .models import ChatModeKey, StreamAnswerRequest
from .session import StreamSession

LOG = logging.getLogger(__name__)


class CliError(Exception):
    """Startup problem reported to the user with exit code 2."""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chatstream", description="chat backend client")
    parser.add_argument("--config", default=None, help="Path to config YAML")
    sub = parser.add_subparsers(dest="command", required=True)

    ask = sub.add_parser("ask", help="Stream an answer for a prompt")
    ask.add_argument("prompt")
    ask.add_argument("--chat-id", default=None, help="Continue an existing chat")
    ask.add_argument(
        "--mode",
        choices=[mode.value for mode in ChatModeKey],
        default=ChatModeKey.GENERIC.value,
    )
    ask.add_argument("--model", default=None, help="Language model key (generic mode)")
    ask.add_argument("--knowledge-base", default=None, help="Knowledge base key (documents mode)")

    stop = sub.add_parser("stop", help="Ask the backend to stop streaming a chat")
    stop.add_argument("chat_id")

    sub.add_parser("health", help="Check backend health")

    chats = sub.add_parser("chats", help="List chats")
    chats.add_argument("--mode", choices=[mode.value for mode in ChatModeKey], default=None)

    messages = sub.add_parser("messages", help="Show the messages of a chat")
    messages.add_argument("chat_id")
    messages.add_argument("--with-chat", action="store_true", help="Include chat metadata")

    hide = sub.add_parser("hide", help="Hide a chat")
    hide.add_argument("chat_id")
    return parser


def _token_provider(cfg: ClientConfig):
    if cfg.auth_token:
        return StaticTokenProvider(cfg.auth_token)
    return EnvTokenProvider()


def _print_json(value: Any) -> None:
    print(json.dumps(value, ensure_ascii=False, indent=2))


async def _ask(client: ChatApiClient, args: argparse.Namespace) -> None:
    request = StreamAnswerRequest(
        conversation_id=args.chat_id,
        user_prompt=args.prompt,
        chat_mode_key=ChatModeKey(args.mode),
        language_model_key=args.model,
        knowledge_base_key=args.knowledge_base,
    )
    session = StreamSession()
    known_chat_id: dict[str, str | None] = {"value": args.chat_id}
    stop_tasks: list[asyncio.Task[Any]] = []

    def on_chunk(text: str, new_chat_id: str | None) -> None:
        if new_chat_id:
            known_chat_id["value"] = new_chat_id
        sys.stdout.write(text)
        sys.stdout.flush()

    def on_interrupt() -> None:
        session.advance()
        chat_id = known_chat_id["value"]
        if chat_id:
            stop_tasks.append(asyncio.ensure_future(client.stop_stream(chat_id)))

    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    try:
        result = await client.stream_answer(request, session, on_chunk)
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)

    for task in stop_tasks:
        try:
            await task
        except ChatApiError as exc:
            LOG.warning("stop request failed: %s", exc)

    sys.stdout.write("\n")
    if result.cancelled:
        print("[stream cancelled]", file=sys.stderr)
    if result.new_chat_id:
        print(f"chat_id: {result.new_chat_id}", file=sys.stderr)
    print(f"correlation_id: {client.correlation_id}", file=sys.stderr)


async def run_command(client: ChatApiClient, args: argparse.Namespace) -> None:
    """Dispatch one parsed sub-command."""
    if args.command == "ask":
        await _ask(client, args)
    elif args.command == "stop":
        _print_json(await client.stop_stream(args.chat_id))
    elif args.command == "health":
        _print_json(await client.get_health())
    elif args.command == "chats":
        _print_json(await client.get_chats(args.mode))
    elif args.command == "messages":
        if args.with_chat:
            _print_json(await client.get_chat_metadata_and_messages(args.chat_id))
        else:
            _print_json(await client.get_chat_messages(args.chat_id))
    elif args.command == "hide":
        _print_json(await client.hide_chat(args.chat_id))
    else:
        raise CliError(f"Unknown command: {args.command}")


async def _run(cfg: ClientConfig, args: argparse.Namespace) -> None:
    async with ChatApiClient(cfg, _token_provider(cfg)) as client:
        await run_command(client, args)


def _config_error_message(exc: ValidationError) -> str:
    missing = []
    for err in exc.errors():
        if err.get("type") == "missing":
            missing.append(".".join(str(x) for x in err.get("loc", [])))
    if missing:
        return (
            "Configuration incomplete. Missing required fields: "
            + ", ".join(sorted(set(missing)))
            + ". Provide --config <file> or set env vars (CHATSTREAM_API_BASE_URL)."
        )
    return f"Invalid configuration: {exc}"


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""

    def fail(message: str, exit_code: int = 2) -> None:
        """Print error and terminate process."""
        print(f"ERROR: {message}", file=sys.stderr)
        raise SystemExit(exit_code)

    args = build_parser().parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ValidationError as exc:
        fail(_config_error_message(exc))
    except Exception as exc:
        fail(f"Failed to load configuration: {exc}")

    assert cfg.logging is not None
    setup_logging(cfg.logging)

    try:
        asyncio.run(_run(cfg, args))
    except ValidationError as exc:
        fail(f"Invalid request: {exc}")
    except (AuthTokenUnavailable, CliError) as exc:
        fail(str(exc))
    except ChatApiError as exc:
        fail(str(exc), exit_code=1)


if __name__ == "__main__":
    main()
