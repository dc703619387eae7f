# services/jwt_utils.py
"""
Identity verification for attaching connections.

Tokens are issued elsewhere; the relay only checks them and reads the stable
user id (``sub``) and an optional display name.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import jwt

from skycall.constants import JWT_ALGORITHM, JWT_AUDIENCE, JWT_PUBLIC_KEY, JWT_SECRET

logger = logging.getLogger(__name__)

if not JWT_SECRET and not JWT_PUBLIC_KEY:
    logger.warning(
        "No verification key set; configure JWT_SECRET or JWT_PUBLIC_KEY in the environment.")


@dataclass(frozen=True)
class Identity:
    """A verified caller identity attached to a connection."""
    user_id: str
    name: Optional[str] = None


class IdentityError(Exception):
    """The bearer credential was missing, expired or invalid."""

    def __init__(self, error_code: str, message: str):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


def _verification_key() -> str:
    return JWT_SECRET if JWT_ALGORITHM.startswith("HS") else JWT_PUBLIC_KEY


def verify_jwt(token: str, key: str = None, algorithm: str = None, audience: str = None) -> dict:
    """
    Decode and validate a JWT signature and its registered claims.

    Args:
        token (str): JWT string to verify.
        key (str, optional): Verification key. Defaults to the configured one.
        algorithm (str, optional): Expected algorithm. Defaults to JWT_ALGORITHM.
        audience (str, optional): Expected ``aud``. Defaults to JWT_AUDIENCE.

    Returns:
        dict: Decoded JWT payload.

    Raises:
        jwt.ExpiredSignatureError: If the token has expired.
        jwt.InvalidTokenError: If the signature or a required claim is invalid.
    """
    algorithm = algorithm or JWT_ALGORITHM
    audience = audience if audience is not None else JWT_AUDIENCE
    return jwt.decode(
        token,
        key if key is not None else _verification_key(),
        algorithms=[algorithm],
        audience=audience or None,
        # Integer subjects are valid user ids here
        options={"require": ["sub", "exp"], "verify_sub": False},
    )


def identity_from_token(token, **kwargs) -> Identity:
    """
    Verify a bearer token and return the identity it vouches for.

    Extra keyword arguments are passed to ``verify_jwt``.

    Returns:
        Identity: User id taken from ``sub`` and name from ``name`` or ``username``.

    Raises:
        IdentityError: With code MISSING_TOKEN, TOKEN_EXPIRED or INVALID_TOKEN.
    """
    if not token or not isinstance(token, str):
        raise IdentityError("MISSING_TOKEN", "Access token is missing.")
    try:
        payload = verify_jwt(token, **kwargs)
    except jwt.ExpiredSignatureError as e:
        logger.info(f"Rejected expired token: {e}")
        raise IdentityError("TOKEN_EXPIRED", "Access token has expired.") from e
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected invalid token: {e}")
        raise IdentityError("INVALID_TOKEN", "Access token is invalid.") from e

    user_id = str(payload["sub"]).strip()
    if not user_id:
        raise IdentityError("INVALID_TOKEN", "Access token has an empty subject.")
    name = payload.get("name") or payload.get("username")
    return Identity(user_id=user_id, name=str(name) if name else None)
