from __future__ import annotations

import logging
import secrets

from todoist_mcp.models import TODOIST_PROVIDER, Account, User
from todoist_mcp.repositories.entity_store import EntityStore, EntityStoreError
from todoist_mcp.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class NoLinkedAccountError(EntityStoreError):
    def __init__(self, user_id: int | None) -> None:
        super().__init__(f"user {user_id} has no linked Todoist account")
        self.user_id = user_id


def generate_api_token() -> str:
    return secrets.token_urlsafe(32)


async def create_user(
    store: EntityStore, *, username: str, api_token: str | None = None
) -> User:
    user = User(username=username.strip(), api_token=api_token or generate_api_token())
    await store.insert(User, user)
    logger.info("user created id=%s username=%s", user.id, user.username)
    return user


async def link_account(
    store: EntityStore, engine: SyncEngine, *, user: User, todoist_token: str
) -> Account:
    """Link (or re-link) the user's Todoist account and make sure it has a cursor."""

    if user.id is None:
        raise EntityStoreError("user has not been stored yet")
    token = todoist_token.strip()
    if not token:
        raise ValueError("Todoist token is required")

    existing = await store.query_by_index(Account, "by_user_provider", (user.id, TODOIST_PROVIDER))
    if existing:
        account = existing[0]
        await store.patch(Account, account.id, {"api_token": token, "is_enabled": True})
        account = await store.get(Account, account.id) or account
    else:
        account = Account(user_id=user.id, provider=TODOIST_PROVIDER, api_token=token)
        await store.insert(Account, account)
        logger.info("todoist account linked user_id=%s account_id=%s", user.id, account.id)

    await engine.open_cursor(account)
    return account


async def get_active_account(store: EntityStore, user: User) -> Account:
    rows = await store.query_by_index(Account, "by_user_provider", (user.id, TODOIST_PROVIDER))
    for account in rows:
        if account.is_enabled:
            return account
    raise NoLinkedAccountError(user.id)


async def get_user_by_username(store: EntityStore, username: str) -> User | None:
    rows = await store.query_by_index(User, "by_username", username.strip())
    return rows[0] if rows else None


async def resolve_user_by_token(store: EntityStore, token: str) -> User | None:
    token = (token or "").strip()
    if not token:
        return None
    for user in await store.query_by_index(User, "by_api_token", token):
        if user.is_active:
            return user
    return None
