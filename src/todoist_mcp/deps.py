from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from todoist_mcp.bootstrap import Services
from todoist_mcp.mcp.tools import ToolContext
from todoist_mcp.services import accounts_service
from todoist_mcp.services.accounts_service import NoLinkedAccountError

_bearer = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="services not initialized"
        )
    return services


async def get_tool_context(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    services: Services = Depends(get_services),
) -> ToolContext:
    """Resolve the bearer token into a user and its linked account.

    Missing or unknown tokens still yield a context; methods that need an
    account reject the call themselves.
    """

    raw_token = creds.credentials if creds is not None else None
    user = await accounts_service.resolve_user_by_token(services.store, raw_token or "")
    if user is None:
        return ToolContext(engine=services.engine)

    request.state.auth_user_id = user.id
    try:
        account = await accounts_service.get_active_account(services.store, user)
    except NoLinkedAccountError:
        account = None
    return ToolContext(engine=services.engine, user=user, account=account)
