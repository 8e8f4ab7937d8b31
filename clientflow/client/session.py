"""
Authentication session manager.

Owns the single AppState describing who is signed in. It listens to the auth
client's event stream, loads the application profile once a session exists and
resolves the caller's role. Consumers read ``manager.state`` or subscribe to
changes; nothing else mutates the state.
"""
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import anyio

from ..config import settings
from ..logging import structlog
from ..roles import Role, resolve_role
from .auth import AuthClient, AuthEvent, Session
from .errors import ApiError, is_auth_error


PORTAL_MARKER = "_portal_user"


class SessionStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING_PROFILE = "loading_profile"
    AUTHENTICATED = "authenticated"
    PORTAL = "portal"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class AppState:
    status: SessionStatus = SessionStatus.UNINITIALIZED
    user: Optional[Dict[str, Any]] = None
    profile: Optional[Dict[str, Any]] = None
    portal_account: Optional[Dict[str, Any]] = None
    role: Optional[Role] = None
    session_expired: bool = False
    is_online: bool = True

    @property
    def user_id(self) -> Optional[str]:
        return (self.user or {}).get("id")

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def loading(self) -> bool:
        return self.status in (SessionStatus.UNINITIALIZED, SessionStatus.LOADING_PROFILE)


StateListener = Callable[[AppState], None]


class AuthSessionManager:
    def __init__(self, auth: AuthClient, backend, init_timeout: Optional[float] = None):
        self._auth = auth
        self._backend = backend
        self._init_timeout = settings.auth_init_timeout_s if init_timeout is None else init_timeout
        self._state = AppState()
        self._listeners: List[StateListener] = []
        self._subscription = None
        # Set while we sign the user out ourselves after a rejected token
        self._forced_sign_out = False

    @property
    def state(self) -> AppState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _set(self, **changes) -> None:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            listener(self._state)

    # -- lifecycle --
    async def start(self) -> AppState:
        """
        Subscribe to auth events and wait for the initial session. If nothing
        settles within the init timeout the caller is treated as signed out.
        """
        if self._subscription is None:
            self._subscription = self._auth.on_auth_state_change(self._handle_event)
        with anyio.move_on_after(self._init_timeout):
            await self._auth.initialize()
        if self._state.loading:
            structlog.get_logger().warning("auth_init_timed_out", timeout_s=self._init_timeout)
            self._set(status=SessionStatus.UNAUTHENTICATED)
        return self._state

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def _handle_event(self, event: AuthEvent, session: Optional[Session]) -> None:
        log = structlog.get_logger()
        try:
            if event in (AuthEvent.INITIAL_SESSION, AuthEvent.SIGNED_IN):
                if session is not None and session.access_token:
                    self._set(user=session.user)
                    await self._load_profile(session.access_token)
                    if event is AuthEvent.SIGNED_IN and self._state.status in (SessionStatus.AUTHENTICATED, SessionStatus.PORTAL):
                        self._set(session_expired=False)
                else:
                    self._set(status=SessionStatus.UNAUTHENTICATED, user=None, profile=None, portal_account=None, role=None)
            elif event is AuthEvent.SIGNED_OUT:
                expired = self._state.session_expired if self._forced_sign_out else False
                self._set(
                    status=SessionStatus.UNAUTHENTICATED,
                    user=None, profile=None, portal_account=None, role=None,
                    session_expired=expired,
                )
            elif event is AuthEvent.TOKEN_REFRESHED:
                self._set(user=session.user if session else None, session_expired=False)
            elif event is AuthEvent.USER_UPDATED:
                self._set(user=session.user if session else None)
                if session is not None and session.access_token:
                    await self._load_profile(session.access_token)
        except ApiError as e:
            log.error("auth_event_failed", auth_event=event.value, error=e.message)
            if self._state.loading:
                self._set(status=SessionStatus.UNAUTHENTICATED)

    async def _load_profile(self, access_token: str) -> None:
        log = structlog.get_logger()
        self._set(status=SessionStatus.LOADING_PROFILE)
        resp = await self._backend.fetch_profile(access_token)

        if resp.status_code == 401:
            log.warning("profile_load_unauthorized")
            self._set(session_expired=True, profile=None, portal_account=None, role=None)
            await self._force_sign_out()
            return

        if resp.status_code >= 400:
            # Fail closed: a session without a profile is treated as signed out
            log.error("profile_load_failed", status=resp.status_code)
            self._set(status=SessionStatus.UNAUTHENTICATED, profile=None, portal_account=None, role=None)
            return

        data = resp.json()
        if data.get(PORTAL_MARKER):
            portal = {k: v for k, v in data.items() if k != PORTAL_MARKER}
            self._set(status=SessionStatus.PORTAL, profile=None, portal_account=portal, role=Role.PORTAL)
            return

        role = resolve_role(data.get("role"))
        if role is None:
            log.error("profile_role_unknown", role=data.get("role"))
            self._set(status=SessionStatus.UNAUTHENTICATED, profile=None, portal_account=None, role=None)
            return
        self._set(status=SessionStatus.AUTHENTICATED, profile=data, portal_account=None, role=role)

    async def _force_sign_out(self) -> None:
        self._forced_sign_out = True
        try:
            await self._auth.sign_out()
        except ApiError as e:
            structlog.get_logger().warning("forced_sign_out_failed", error=e.message)
        finally:
            self._forced_sign_out = False

    # -- operations: each returns the error, or None on success --
    def _note_error(self, error: ApiError) -> ApiError:
        if is_auth_error(error):
            self._set(session_expired=True)
        return error

    def _settled(self) -> Optional[ApiError]:
        """Result of an operation that reloaded the profile."""
        if self._state.status in (SessionStatus.AUTHENTICATED, SessionStatus.PORTAL):
            self._set(session_expired=False)
            return None
        if self._state.session_expired:
            return ApiError("Your session has expired. Please sign in again.", status=401)
        return ApiError("Unable to load your profile. Please try again.")

    async def sign_in(self, email: str, password: str) -> Optional[ApiError]:
        try:
            await self._auth.sign_in_with_password(email, password)
        except ApiError as e:
            if self._state.loading:
                self._set(status=SessionStatus.UNAUTHENTICATED)
            return self._note_error(e)
        return self._settled()

    async def sign_up(self, email: str, password: str, full_name: Optional[str] = None) -> Optional[ApiError]:
        data = {"full_name": full_name} if full_name else {}
        try:
            await self._auth.sign_up(email, password, data=data)
        except ApiError as e:
            return self._note_error(e)
        return self._settled()

    async def sign_out(self) -> None:
        try:
            await self._auth.sign_out()
        except ApiError as e:
            structlog.get_logger().warning("sign_out_failed", error=e.message)
        # Local state is cleared whether or not the backend call succeeded
        self._set(
            status=SessionStatus.UNAUTHENTICATED,
            user=None, profile=None, portal_account=None, role=None,
            session_expired=False,
        )

    async def reset_password(self, email: str) -> Optional[ApiError]:
        try:
            await self._auth.reset_password_for_email(email)
        except ApiError as e:
            return self._note_error(e)
        return None

    async def update_password(self, new_password: str) -> Optional[ApiError]:
        try:
            await self._auth.update_user(password=new_password)
        except ApiError as e:
            return self._note_error(e)
        return self._settled()

    async def refresh_session(self) -> Optional[ApiError]:
        try:
            await self._auth.refresh_session()
        except ApiError as e:
            if is_auth_error(e):
                self._set(session_expired=True)
                await self._force_sign_out()
            return e
        return None

    def set_online(self, online: bool) -> None:
        if online:
            # Optimistic: the session is not re-validated here
            self._set(is_online=True, session_expired=False)
        else:
            self._set(is_online=False)
