"""Verification of access tokens issued by the hosted auth backend.

This service never issues tokens. The auth backend signs HS256 tokens with a
shared secret; the `sub` claim is the user id, which is also the ledger
account id. `aud` is checked when AUTH_JWT_AUDIENCE is set.
"""

from jose import JWTError, jwt

from config.settings import settings
from src.cr_common.errors import InvalidCredentialsError


def decode_access_token(token: str) -> dict[str, object]:
    """Decode and validate a bearer token.

    Returns:
        Decoded payload with at least a non-empty string "sub".

    Raises:
        InvalidCredentialsError: bad signature, expired, wrong audience, or no subject.
    """
    audience = settings.AUTH_JWT_AUDIENCE
    try:
        payload: dict[str, object] = jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=[settings.AUTH_JWT_ALGORITHM],  # Explicit list prevents algorithm confusion
            audience=audience,
            options={"verify_aud": audience is not None},
        )
    except JWTError:
        raise InvalidCredentialsError() from None

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise InvalidCredentialsError()
    return payload
