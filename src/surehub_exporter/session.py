"""Login and bearer-token handling for the SureHub API."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import jwt

from surehub_exporter.client import SurehubError

if TYPE_CHECKING:
    from surehub_exporter.client import SurehubClient

logger = logging.getLogger(__name__)


class AuthError(RuntimeError):
    """Raised when login fails or returns an unusable token."""


@dataclass(frozen=True)
class Session:
    """An authenticated SureHub session.

    ``expires_at`` is read from the token claims for diagnostics only; it is
    never checked before the token is used.
    """

    email: str
    token: str = field(repr=False)
    expires_at: datetime | None = None
    claims: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def authorization(self) -> str:
        return f"Bearer {self.token}"


def _decode_unverified(token: str) -> tuple[dict[str, Any], datetime | None]:
    """Decode JWT claims without verifying the signature.

    Returns the claims and the ``exp`` instant (``None`` when the claim is
    absent). A malformed token or a non-numeric ``exp`` raises ``AuthError``.
    """
    try:
        claims = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False},
        )
    except jwt.InvalidTokenError as exc:
        raise AuthError(f"invalid jwt returned: {exc}") from exc

    exp = claims.get("exp")
    if exp is None:
        return claims, None
    if isinstance(exp, bool) or not isinstance(exp, int | float):
        raise AuthError(f"jwt was valid but couldn't read expiration: {exp!r}")
    return claims, datetime.fromtimestamp(exp, UTC)


class SessionManager:
    """Owns the current bearer token.

    The token is replaced only by an explicit ``login()``. Callers that see
    a 401 may call ``invalidate()`` so the next ``ensure_session()`` logs in
    again; nothing here refreshes on a timer.
    """

    def __init__(self, client: SurehubClient, *, email: str, password: str) -> None:
        self._client = client
        self._email = email
        self._password = password
        self._session: Session | None = None
        self._stale = False
        self._lock = asyncio.Lock()

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def is_stale(self) -> bool:
        return self._stale

    def authorization(self) -> str:
        """Return the ``Authorization`` header value for the current session."""
        if self._session is None:
            raise AuthError("not logged in")
        return self._session.authorization

    async def login(self) -> Session:
        async with self._lock:
            session = await self._login()
            self._session = session
            self._stale = False
            return session

    async def ensure_session(self) -> Session:
        """Return the current session, logging in first if missing or stale."""
        if self._session is not None and not self._stale:
            return self._session
        if self._session is not None:
            logger.info("Session marked stale, logging in again", extra={"email": self._email})
        return await self.login()

    def invalidate(self) -> None:
        self._stale = True

    async def _login(self) -> Session:
        # a fresh client identifier per attempt; the API does not require it to persist
        client_uid = str(uuid.uuid4())
        try:
            response = await self._client.login(
                client_uid=client_uid,
                email=self._email,
                password=self._password,
            )
        except SurehubError as exc:
            raise AuthError(f"login failed: {exc}") from exc

        token = response.data.token.strip()
        if not token:
            raise AuthError("unexpected login response - empty token")

        claims, expires_at = _decode_unverified(token)
        logger.info(
            "Logged in",
            extra={
                "email": self._email,
                "expires": expires_at.isoformat() if expires_at else None,
                "claims": sorted(claims),
            },
        )
        return Session(email=self._email, token=token, expires_at=expires_at, claims=claims)
