"""Authentication helpers for the portal APIs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

ACCESS_TOKEN_TTL = timedelta(hours=1)


@dataclass
class AuthError(Exception):
    """Raised when a request cannot be tied to a portal user."""

    message: str
    status_code: int = 401

    def __str__(self) -> str:  # pragma: no cover - dataclass convenience
        return self.message


def bearer_token(header: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header."""

    if not header or not header.startswith('Bearer '):
        return None
    token = header[len('Bearer '):].strip()
    return token or None


def decode_access_token(token: str, secret: str) -> Dict[str, Any]:
    """Validate and decode an access token issued for local development.

    Parameters
    ----------
    token:
        The encoded JWT string sent in the ``Authorization`` header.
    secret:
        Shared secret for verifying the signature, supplied via the
        ``PORTAL_JWT_SECRET`` environment variable.

    Returns
    -------
    dict
        The decoded token payload. ``sub`` carries the user id.

    Raises
    ------
    AuthError
        If the token is missing, invalid, expired, or the secret is not
        configured on the server.
    """

    if not secret:
        raise AuthError('Token authentication is not configured on this server.', 503)

    if not token:
        raise AuthError('Unauthorized')

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=['HS256'],
            options={'require': ['exp', 'sub']},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthError('Authorization token has expired.') from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError('Unauthorized') from exc

    exp = payload.get('exp')
    if isinstance(exp, (int, float)):
        expiry = datetime.fromtimestamp(exp, tz=timezone.utc)
        if expiry < datetime.now(timezone.utc):
            raise AuthError('Authorization token has expired.')

    return payload


def encode_access_token(
    user_id: str,
    email: Optional[str],
    secret: str,
    ttl: timedelta = ACCESS_TOKEN_TTL,
) -> str:
    """Sign a short-lived HS256 token that :func:`decode_access_token` accepts."""

    if not secret:
        raise AuthError('Token authentication is not configured on this server.', 503)

    claims: Dict[str, Any] = {
        'sub': str(user_id),
        'exp': datetime.now(timezone.utc) + ttl,
    }
    if email:
        claims['email'] = email
    return jwt.encode(claims, secret, algorithm='HS256')
