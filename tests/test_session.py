import anyio
import httpx
import pytest

from clientflow.roles import Role
from clientflow.client.auth import AuthClient, AuthEvent, Session
from clientflow.client.backend import Backend
from clientflow.client.session import AuthSessionManager, SessionStatus

from conftest import PASSWORD


USER = {"id": "33333333-3333-3333-3333-333333333333", "email": "emma@clientflow.io"}


class FakeBackend:
    """Routes by path; records every request."""

    def __init__(self, profile_response):
        self.profile_response = profile_response
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if request.url.path == "/api/profile":
            return self.profile_response
        if request.url.path == "/auth/logout":
            return httpx.Response(204)
        if request.url.path == "/auth/token":
            return httpx.Response(200, json={"access_token": "fresh", "refresh_token": "r2", "expires_in": 3600, "user": USER})
        return httpx.Response(404, json={"detail": "Not Found"})

    def called(self, method, path) -> bool:
        return (method, path) in self.requests


def manager_with_session(fake: FakeBackend, timeout: float = 4.0) -> AuthSessionManager:
    backend = Backend("http://backend.test", transport=httpx.MockTransport(fake))
    backend.auth = AuthClient(backend, session=Session(access_token="stale-token", refresh_token="r", expires_in=3600, user=USER))
    return AuthSessionManager(backend.auth, backend, init_timeout=timeout)


@pytest.mark.anyio
async def test_unauthorized_profile_expires_session_and_signs_out():
    fake = FakeBackend(httpx.Response(401, json={"detail": "JWT expired"}))
    manager = manager_with_session(fake)
    state = await manager.start()
    assert state.profile is None
    assert state.session_expired is True
    assert state.status is SessionStatus.UNAUTHENTICATED
    assert fake.called("POST", "/auth/logout")
    assert manager._auth.session is None


@pytest.mark.anyio
async def test_sign_in_with_rejected_profile_reports_expiry():
    fake = FakeBackend(httpx.Response(401, json={"detail": "JWT expired"}))
    backend = Backend("http://backend.test", transport=httpx.MockTransport(fake))
    manager = AuthSessionManager(backend.auth, backend)
    await manager.start()

    error = await manager.sign_in(USER["email"], "Abcdef12")
    assert error is not None
    assert error.status == 401
    assert manager.state.status is SessionStatus.UNAUTHENTICATED
    assert manager.state.session_expired is True
    assert manager.state.profile is None
    assert fake.called("POST", "/auth/logout")
    assert backend.auth.session is None


@pytest.mark.anyio
async def test_sign_in_with_broken_profile_fails_closed():
    backend = Backend("http://backend.test", transport=httpx.MockTransport(FakeBackend(httpx.Response(500))))
    manager = AuthSessionManager(backend.auth, backend)
    await manager.start()

    error = await manager.sign_in(USER["email"], "Abcdef12")
    assert error is not None
    assert manager.state.status is SessionStatus.UNAUTHENTICATED
    assert manager.state.session_expired is False


@pytest.mark.anyio
async def test_profile_load_failure_fails_closed():
    fake = FakeBackend(httpx.Response(500, json={"detail": "boom"}))
    state = await manager_with_session(fake).start()
    assert state.status is SessionStatus.UNAUTHENTICATED
    assert state.profile is None
    assert state.session_expired is False
    assert not fake.called("POST", "/auth/logout")


@pytest.mark.anyio
async def test_portal_marker_routes_to_portal():
    portal = {"_portal_user": True, "id": "p1", "client_id": "c1", "email": "contact@acme.io", "full_name": "Acme Contact"}
    state = await manager_with_session(FakeBackend(httpx.Response(200, json=portal))).start()
    assert state.status is SessionStatus.PORTAL
    assert state.role is Role.PORTAL
    assert state.portal_account == {"id": "p1", "client_id": "c1", "email": "contact@acme.io", "full_name": "Acme Contact"}
    assert state.profile is None


@pytest.mark.anyio
async def test_profile_role_is_resolved_once():
    profile = {"id": USER["id"], "email": USER["email"], "full_name": "Emma", "role": "employee", "status": "active"}
    state = await manager_with_session(FakeBackend(httpx.Response(200, json=profile))).start()
    assert state.status is SessionStatus.AUTHENTICATED
    assert state.role is Role.EMPLOYEE
    assert state.user_id == USER["id"]
    assert not state.is_admin


@pytest.mark.anyio
async def test_unknown_role_is_not_authenticated():
    profile = {"id": USER["id"], "role": "superuser"}
    state = await manager_with_session(FakeBackend(httpx.Response(200, json=profile))).start()
    assert state.status is SessionStatus.UNAUTHENTICATED
    assert state.role is None


class HangingAuth(AuthClient):
    async def initialize(self) -> None:
        await anyio.sleep(30)


@pytest.mark.anyio
async def test_initialization_gives_up_after_timeout():
    backend = Backend("http://backend.test", transport=httpx.MockTransport(FakeBackend(httpx.Response(500))))
    manager = AuthSessionManager(HangingAuth(backend), backend, init_timeout=0.05)
    with anyio.fail_after(5):
        state = await manager.start()
    assert state.status is SessionStatus.UNAUTHENTICATED
    assert not state.loading


@pytest.mark.anyio
async def test_no_session_means_unauthenticated():
    backend = Backend("http://backend.test", transport=httpx.MockTransport(FakeBackend(httpx.Response(500))))
    state = await AuthSessionManager(backend.auth, backend).start()
    assert state.status is SessionStatus.UNAUTHENTICATED


def test_coming_online_clears_expired_flag_optimistically():
    manager = manager_with_session(FakeBackend(httpx.Response(500)))
    manager._set(session_expired=True)
    manager.set_online(False)
    assert manager.state.is_online is False
    assert manager.state.session_expired is True
    manager.set_online(True)
    assert manager.state.is_online is True
    assert manager.state.session_expired is False


def test_subscribers_see_every_change_until_unsubscribed():
    manager = manager_with_session(FakeBackend(httpx.Response(500)))
    seen = []
    unsubscribe = manager.subscribe(seen.append)
    manager.set_online(False)
    unsubscribe()
    manager.set_online(True)
    assert len(seen) == 1
    assert seen[0].is_online is False


@pytest.mark.anyio
async def test_sign_in_and_out_against_the_app(backend_factory, admin):
    backend = backend_factory()
    manager = AuthSessionManager(backend.auth, backend)
    await manager.start()
    assert manager.state.status is SessionStatus.UNAUTHENTICATED

    events = []
    backend.auth.on_auth_state_change(lambda event, session: events.append(event))

    assert await manager.sign_in(admin.email, PASSWORD) is None
    assert manager.state.status is SessionStatus.AUTHENTICATED
    assert manager.state.is_admin
    assert manager.state.profile["full_name"] == "Ada Admin"

    await manager.sign_out()
    assert manager.state.status is SessionStatus.UNAUTHENTICATED
    assert manager.state.user is None
    assert manager.state.session_expired is False
    assert events == [AuthEvent.SIGNED_IN, AuthEvent.SIGNED_OUT]


@pytest.mark.anyio
async def test_wrong_password_is_returned_not_raised(backend_factory, admin):
    backend = backend_factory()
    manager = AuthSessionManager(backend.auth, backend)
    await manager.start()
    error = await manager.sign_in(admin.email, "Wrong-password1")
    assert error is not None
    assert error.status == 400
    assert manager.state.session_expired is False
    assert manager.state.status is SessionStatus.UNAUTHENTICATED


@pytest.mark.anyio
async def test_sign_up_creates_a_profile(backend_factory):
    backend = backend_factory()
    manager = AuthSessionManager(backend.auth, backend)
    await manager.start()
    assert await manager.sign_up("first@clientflow.io", "Abcdef12", full_name="First Person") is None
    # The first account in an empty organization bootstraps as admin
    assert manager.state.role is Role.ADMIN
    assert manager.state.profile["full_name"] == "First Person"


@pytest.mark.anyio
async def test_refresh_rotates_tokens(backend_factory, employee):
    backend = backend_factory()
    manager = AuthSessionManager(backend.auth, backend)
    await manager.start()
    await manager.sign_in(employee.email, PASSWORD)
    old_refresh = backend.auth.session.refresh_token

    assert await manager.refresh_session() is None
    assert backend.auth.session.refresh_token != old_refresh

    # The previous refresh token is single-use
    backend.auth.session.refresh_token = old_refresh
    error = await manager.refresh_session()
    assert error is not None and error.status == 401
    assert manager.state.session_expired is True
    assert manager.state.status is SessionStatus.UNAUTHENTICATED


@pytest.mark.anyio
async def test_update_password(backend_factory, employee):
    backend = backend_factory()
    manager = AuthSessionManager(backend.auth, backend)
    await manager.start()
    await manager.sign_in(employee.email, PASSWORD)
    assert await manager.update_password("NewSecret456") is None
    await manager.sign_out()
    assert await manager.sign_in(employee.email, "NewSecret456") is None
    assert manager.state.role is Role.EMPLOYEE
