"""
Auth client: password sign-in, token refresh and a state-change event stream.

Listeners registered with on_auth_state_change receive (event, session) for every
transition. They may be plain functions or coroutines; coroutines are awaited
before the triggering call returns.
"""
from dataclasses import dataclass, field
from enum import Enum
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..logging import structlog
from .errors import ApiError


class AuthEvent(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_RECOVERY = "PASSWORD_RECOVERY"


@dataclass
class Session:
    access_token: str
    refresh_token: str
    expires_in: int
    user: Dict[str, Any] = field(default_factory=dict)
    token_type: str = "bearer"

    @property
    def user_id(self) -> Optional[str]:
        return self.user.get("id")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Session":
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload["refresh_token"],
            expires_in=int(payload.get("expires_in") or 0),
            user=payload.get("user") or {},
            token_type=payload.get("token_type") or "bearer",
        )


AuthListener = Callable[[AuthEvent, Optional[Session]], Union[None, Awaitable[None]]]


class Subscription:
    def __init__(self, client: "AuthClient", callback: AuthListener):
        self._client = client
        self.callback = callback

    def unsubscribe(self) -> None:
        if self in self._client._listeners:
            self._client._listeners.remove(self)


class AuthClient:
    def __init__(self, backend, session: Optional[Session] = None):
        self._backend = backend
        self._listeners: List[Subscription] = []
        self._session: Optional[Session] = None
        self._set_session(session)

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def _set_session(self, session: Optional[Session]) -> None:
        self._session = session
        self._backend.access_token = session.access_token if session else None

    def on_auth_state_change(self, callback: AuthListener) -> Subscription:
        sub = Subscription(self, callback)
        self._listeners.append(sub)
        return sub

    async def _emit(self, event: AuthEvent, session: Optional[Session]) -> None:
        structlog.get_logger().info("auth_event", auth_event=event.value, has_session=session is not None)
        for sub in list(self._listeners):
            result = sub.callback(event, session)
            if inspect.isawaitable(result):
                await result

    async def initialize(self) -> None:
        """Announce whatever session is already held (possibly none) as INITIAL_SESSION."""
        await self._emit(AuthEvent.INITIAL_SESSION, self._session)

    def get_session(self) -> Optional[Session]:
        return self._session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        resp = await self._backend.request(
            "POST", "/auth/token", params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = Session.from_payload(resp.json())
        self._set_session(session)
        await self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str, data: Optional[Dict[str, Any]] = None) -> Session:
        resp = await self._backend.request(
            "POST", "/auth/signup",
            json={"email": email, "password": password, "data": data or {}},
        )
        session = Session.from_payload(resp.json())
        self._set_session(session)
        await self._emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_out(self) -> None:
        """Revoke server-side sessions, then drop the local one even if revoking failed."""
        error: Optional[ApiError] = None
        if self._session is not None:
            try:
                await self._backend.request("POST", "/auth/logout")
            except ApiError as e:
                error = e
        self._set_session(None)
        await self._emit(AuthEvent.SIGNED_OUT, None)
        if error is not None:
            raise error

    async def refresh_session(self) -> Session:
        if self._session is None:
            raise ApiError("Auth session missing", status=401)
        resp = await self._backend.request(
            "POST", "/auth/token", params={"grant_type": "refresh_token"},
            json={"refresh_token": self._session.refresh_token},
        )
        session = Session.from_payload(resp.json())
        self._set_session(session)
        await self._emit(AuthEvent.TOKEN_REFRESHED, session)
        return session

    async def reset_password_for_email(self, email: str) -> None:
        await self._backend.request("POST", "/auth/recover", json={"email": email})

    async def update_user(self, password: Optional[str] = None, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if password is not None:
            body["password"] = password
        if data is not None:
            body["data"] = data
        resp = await self._backend.request("PUT", "/auth/user", json=body)
        user = resp.json()
        if self._session is not None:
            self._session.user = user
        await self._emit(AuthEvent.USER_UPDATED, self._session)
        return user
