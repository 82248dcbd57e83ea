from __future__ import annotations

import argparse
import asyncio
import json

from todoist_mcp.bootstrap import build_services
from todoist_mcp.config import settings
from todoist_mcp.db import dispose_engine_cache
from todoist_mcp.services import accounts_service


async def _link(username: str, todoist_token: str, initial_sync: bool) -> dict[str, object]:
    services = build_services(settings)
    store = services.store

    user = await accounts_service.get_user_by_username(store, username)
    if user is None:
        user = await accounts_service.create_user(store, username=username)
    account = await accounts_service.link_account(
        store, services.engine, user=user, todoist_token=todoist_token
    )

    out: dict[str, object] = {"ok": True, "user_id": user.id, "account_id": account.id}
    out["api_token"] = user.api_token
    if initial_sync:
        summary = await services.engine.sync(account, full=True)
        out["sync"] = summary.as_dict()
    return out


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Create (or reuse) a local user and link its Todoist account."
    )
    parser.add_argument("--username", required=True)
    parser.add_argument("--todoist-token", required=True, help="Todoist personal API token.")
    parser.add_argument(
        "--no-sync", action="store_true", help="Skip the initial full pull/push pass."
    )
    args = parser.parse_args()

    try:
        result = asyncio.run(_link(args.username, args.todoist_token, not args.no_sync))
    finally:
        dispose_engine_cache()
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
