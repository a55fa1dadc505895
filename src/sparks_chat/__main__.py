"""CLI entry point for sparks-chat."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Awaitable, Callable

from sparks_chat.api.schemas import (
    EstimateRequest,
    EstimateResponse,
    HistoryPageRequest,
    MessageIn,
    SendMessageIn,
)
from sparks_chat.app import SparksChatApp
from sparks_chat.config import AppConfig, load_config
from sparks_chat.core.errors import SparksChatError
from sparks_chat.core.types import Role
from sparks_chat.log import setup_logging


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="sparks-chat",
        description="Tool-calling chat with a metered sparks balance",
    )
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("config-check", help="Validate configuration")

    estimate_parser = subparsers.add_parser("estimate", help="Estimate the sparks cost of a call")
    estimate_parser.add_argument("-m", "--model", required=True, help="Model id")
    estimate_parser.add_argument("--input-tokens", type=int, required=True)
    estimate_parser.add_argument("--output-tokens", type=int, default=None)

    account_parser = subparsers.add_parser("open-account", help="Open a sparks account")
    account_parser.add_argument("-u", "--user", required=True, help="User id")
    account_parser.add_argument("--verified", action="store_true", help="Verified tier")

    balance_parser = subparsers.add_parser("balance", help="Show a user's sparks balance")
    balance_parser.add_argument("-u", "--user", required=True, help="User id")

    claim_parser = subparsers.add_parser("claim", help="Claim today's sparks")
    claim_parser.add_argument("-u", "--user", required=True, help="User id")

    history_parser = subparsers.add_parser("history", help="Show one page of a conversation")
    history_parser.add_argument("-u", "--user", required=True, help="User id")
    history_parser.add_argument("--conversation", required=True, help="Conversation id")
    history_parser.add_argument("--cursor", default=None, help="Cursor from a previous page")
    history_parser.add_argument("--limit", type=int, default=None, help="Page size")

    chat_parser = subparsers.add_parser("chat", help="Send one message and print the answer")
    chat_parser.add_argument("-u", "--user", required=True, help="User id")
    chat_parser.add_argument("--conversation", default=None, help="Conversation id (new if omitted)")
    chat_parser.add_argument("-m", "--model", default=None, help="Model id")
    chat_parser.add_argument("text", help="Message text")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(2)

    config = _load(args.config, args.env)
    setup_logging(config.log_level, json_output=config.json_logs)

    if args.command == "config-check":
        _check_config(args.config, config)
    elif args.command == "estimate":
        _estimate(config, args)
    else:
        _run(config, _COMMANDS[args.command], args)


def _load(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and .env.example to .env")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, config: AppConfig) -> None:
    """Print a configuration summary."""
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Storage: {config.storage.db_path}")
    print(f"  Default model: {config.ai.default_model}")
    print(f"  Anthropic API: {'configured' if config.anthropic else 'missing'}")
    print(f"  Tool rounds: {config.tools.max_rounds} (timeout {config.tools.call_timeout}s)")
    print(f"  Sparks timezone: {config.sparks.timezone}")
    print("  Model multipliers:")
    for model_id, multiplier in config.sparks.model_multipliers.items():
        print(f"    - {model_id}: x{multiplier}")


def _estimate(config: AppConfig, args: argparse.Namespace) -> None:
    app = SparksChatApp(config)
    try:
        request = EstimateRequest(
            model_id=args.model,
            input_tokens=args.input_tokens,
            output_tokens=args.output_tokens,
        )
        output_tokens = (
            request.output_tokens if request.output_tokens is not None else request.input_tokens
        )
        cost = app.ledger.estimate(request.model_id, request.input_tokens, output_tokens)
    except (SparksChatError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    response = EstimateResponse(
        estimated_cost=cost,
        model_id=request.model_id,
        input_tokens=request.input_tokens,
        output_tokens=output_tokens,
    )
    _print(response.to_wire())


async def _open_account(app: SparksChatApp, args: argparse.Namespace) -> Any:
    await app.ledger.open_account(args.user, verified=args.verified)
    return (await app.service.balance(args.user)).to_wire()


async def _balance(app: SparksChatApp, args: argparse.Namespace) -> Any:
    return (await app.service.balance(args.user)).to_wire()


async def _claim(app: SparksChatApp, args: argparse.Namespace) -> Any:
    return (await app.service.claim(args.user)).to_wire()


async def _history(app: SparksChatApp, args: argparse.Namespace) -> Any:
    request = HistoryPageRequest(
        conversation_id=args.conversation, cursor=args.cursor, limit=args.limit
    )
    return (await app.service.history(args.user, request)).to_wire()


async def _chat(app: SparksChatApp, args: argparse.Namespace) -> Any:
    conversation_id = args.conversation
    if conversation_id is None:
        conversation_id = (await app.service.create_conversation(args.user)).id
    response = await app.service.send_message(
        args.user,
        SendMessageIn(
            conversation_id=conversation_id,
            messages=[MessageIn(role=Role.USER, content=args.text)],
            model_id=args.model,
        ),
    )
    return response.to_wire()


_COMMANDS: dict[str, Callable[[SparksChatApp, argparse.Namespace], Awaitable[Any]]] = {
    "open-account": _open_account,
    "balance": _balance,
    "claim": _claim,
    "history": _history,
    "chat": _chat,
}


def _run(
    config: AppConfig,
    command: Callable[[SparksChatApp, argparse.Namespace], Awaitable[Any]],
    args: argparse.Namespace,
) -> None:
    """Start the application, run one command, and shut down."""

    async def _async_main() -> Any:
        app = SparksChatApp(config)
        await app.start()
        try:
            return await command(app, args)
        finally:
            await app.stop()

    try:
        output = asyncio.run(_async_main())
    except SparksChatError as e:
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        sys.exit(1)
    _print(output)


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
