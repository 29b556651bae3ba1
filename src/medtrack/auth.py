"""Identity provider boundary.

The tracker only needs a stable user id, an optional display name, and a
stream of sign-in/sign-out notifications. ``SupabaseIdentityProvider``
talks to a Supabase (GoTrue) auth endpoint; ``LocalIdentityProvider``
yields a fixed offline session.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import httpx

from .errors import AuthError

logger = logging.getLogger(__name__)

AuthEvent = Literal["SIGNED_IN", "SIGNED_OUT"]


@dataclass(frozen=True)
class Session:
    user_id: str
    email: str | None = None
    display_name: str | None = None
    access_token: str | None = None


SessionListener = Callable[[AuthEvent, Session | None], None]


class IdentityProvider(Protocol):
    async def get_session(self) -> Session | None: ...

    async def sign_in(self, email: str, password: str) -> Session: ...

    async def sign_up(self, email: str, password: str, name: str | None = None) -> Session | None: ...

    async def sign_out(self) -> None: ...

    def subscribe(self, listener: SessionListener) -> Callable[[], None]: ...


class _SessionNotifier:
    def __init__(self) -> None:
        self._session: Session | None = None
        self._listeners: list[SessionListener] = []

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: AuthEvent, session: Session | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception:
                logger.exception("Session listener failed on %s", event)

    def _signed_in(self, session: Session) -> None:
        self._session = session
        logger.info("Signed in", extra={"medtrack_user_id": session.user_id})
        self._emit("SIGNED_IN", session)

    def _signed_out(self) -> None:
        previous = self._session
        self._session = None
        if previous is not None:
            logger.info("Signed out", extra={"medtrack_user_id": previous.user_id})
        self._emit("SIGNED_OUT", None)


class LocalIdentityProvider(_SessionNotifier):
    """Offline provider: any credentials map to one fixed local user."""

    def __init__(self, user_id: str = "local", display_name: str | None = None) -> None:
        super().__init__()
        self.user_id = user_id
        self.display_name = display_name
        self._session = Session(user_id=user_id, display_name=display_name)

    async def get_session(self) -> Session | None:
        return self._session

    async def sign_in(self, email: str, password: str) -> Session:
        session = Session(user_id=self.user_id, email=email, display_name=self.display_name)
        self._signed_in(session)
        return session

    async def sign_up(self, email: str, password: str, name: str | None = None) -> Session | None:
        session = Session(user_id=self.user_id, email=email, display_name=name or self.display_name)
        self._signed_in(session)
        return session

    async def sign_out(self) -> None:
        self._signed_out()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("error_description", "msg", "message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return f"HTTP {response.status_code}"


def _session_from_payload(payload: dict[str, Any]) -> Session | None:
    token = payload.get("access_token")
    user = payload.get("user")
    if not token or not isinstance(user, dict) or not user.get("id"):
        return None
    metadata = user.get("user_metadata") or {}
    return Session(
        user_id=str(user["id"]),
        email=user.get("email"),
        display_name=metadata.get("name") or metadata.get("full_name"),
        access_token=str(token),
    )


class SupabaseIdentityProvider(_SessionNotifier):
    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__()
        self._client = httpx.AsyncClient(
            base_url=url.rstrip("/"),
            timeout=timeout,
            headers={"apikey": anon_key, "Content-Type": "application/json"},
            transport=transport,
        )

    async def _post(self, path: str, payload: dict[str, Any], *, token: str | None = None) -> Any:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        try:
            resp = await self._client.post(path, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise AuthError(f"Identity provider unreachable: {exc}") from exc
        if resp.status_code >= 400:
            raise AuthError(_error_message(resp))
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise AuthError("Identity provider returned invalid JSON") from exc

    async def get_session(self) -> Session | None:
        return self._session

    async def sign_in(self, email: str, password: str) -> Session:
        payload = await self._post(
            "/auth/v1/token?grant_type=password",
            {"email": email, "password": password},
        )
        session = _session_from_payload(payload)
        if session is None:
            raise AuthError("Identity provider returned no session")
        self._signed_in(session)
        return session

    async def sign_up(self, email: str, password: str, name: str | None = None) -> Session | None:
        """Register a user. Returns None when the provider requires email confirmation first."""
        body: dict[str, Any] = {"email": email, "password": password}
        if name:
            body["data"] = {"name": name}
        payload = await self._post("/auth/v1/signup", body)
        session = _session_from_payload(payload)
        if session is not None:
            self._signed_in(session)
        return session

    async def sign_out(self) -> None:
        token = self._session.access_token if self._session else None
        if token:
            await self._post("/auth/v1/logout", {}, token=token)
        self._signed_out()

    async def aclose(self) -> None:
        await self._client.aclose()
