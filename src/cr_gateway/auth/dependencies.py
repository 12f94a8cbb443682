"""FastAPI dependencies: get_current_account_id, require_webhook_secret.

Usage in any protected router:
    from src.cr_gateway.auth.dependencies import get_current_account_id

    @router.get("/protected")
    async def protected(account_id: str = Depends(get_current_account_id)):
        ...
"""

import hmac

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config.settings import settings
from src.cr_common.errors import InvalidCredentialsError, WebhookAuthError
from src.cr_gateway.auth.jwt_handler import decode_access_token

_bearer_scheme = HTTPBearer(auto_error=False)

# Reusable 401 exception with WWW-Authenticate header (OAuth2 standard)
_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or expired token",
    headers={"WWW-Authenticate": "Bearer"},
)


async def get_current_account_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> str:
    """Validate the Bearer token and return the caller's account id (`sub`)."""
    if credentials is None:
        raise _CREDENTIALS_EXCEPTION
    try:
        payload = decode_access_token(credentials.credentials)
    except InvalidCredentialsError:
        raise _CREDENTIALS_EXCEPTION from None
    return str(payload["sub"])


async def require_webhook_secret(
    x_webhook_secret: str | None = Header(default=None),
) -> None:
    """Payment callbacks must present the shared secret configured for the provider."""
    expected = settings.PAYMENT_WEBHOOK_SECRET
    if not expected or x_webhook_secret is None:
        raise WebhookAuthError()
    if not hmac.compare_digest(x_webhook_secret.encode(), expected.encode()):
        raise WebhookAuthError()
