"""MCP over stdio: one JSON-RPC message per line in, one per line out."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import AsyncIterator, Callable

from todoist_mcp.bootstrap import Services, build_services
from todoist_mcp.config import settings
from todoist_mcp.db import dispose_engine_cache
from todoist_mcp.mcp.dispatcher import McpDispatcher
from todoist_mcp.mcp.jsonrpc import PARSE_ERROR, json_rpc_error
from todoist_mcp.mcp.tools import ToolContext
from todoist_mcp.services import accounts_service
from todoist_mcp.services.accounts_service import NoLinkedAccountError

logger = logging.getLogger(__name__)


async def serve_lines(
    dispatcher: McpDispatcher,
    ctx: ToolContext,
    lines: AsyncIterator[str],
    write: Callable[[str], None],
) -> int:
    """Answer every non-blank line. Returns the number of responses written."""

    written = 0
    async for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
        except ValueError:
            response = json_rpc_error(None, PARSE_ERROR)
        else:
            response = await dispatcher.handle(payload, ctx)
        write(json.dumps(response, ensure_ascii=False))
        written += 1
    return written


async def _stdin_lines() -> AsyncIterator[str]:
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            return
        yield line


def _write_stdout(text: str) -> None:
    sys.stdout.write(text + "\n")
    sys.stdout.flush()


async def _context_for_token(services: Services, token: str | None) -> ToolContext:
    user = await accounts_service.resolve_user_by_token(services.store, token or "")
    if user is None:
        if token:
            logger.warning("stdio token does not match an active user; tools are disabled")
        return ToolContext(engine=services.engine)
    try:
        account = await accounts_service.get_active_account(services.store, user)
    except NoLinkedAccountError:
        logger.warning("user %s has no linked Todoist account", user.id)
        account = None
    return ToolContext(engine=services.engine, user=user, account=account)


async def run_stdio(token: str | None) -> None:
    services = build_services(settings)
    ctx = await _context_for_token(services, token)
    try:
        await serve_lines(services.dispatcher, ctx, _stdin_lines(), _write_stdout)
    finally:
        dispose_engine_cache()


def main() -> int:
    parser = argparse.ArgumentParser(description="Serve the Todoist MCP tools over stdio.")
    parser.add_argument(
        "--token",
        default=None,
        help="API token of the local user whose Todoist account the tools act on.",
    )
    args = parser.parse_args()

    # stdout carries protocol messages; logs go to stderr.
    logging.basicConfig(
        stream=sys.stderr, level=getattr(logging, settings.log_level.upper(), logging.INFO)
    )
    asyncio.run(run_stdio(args.token))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
