import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import Header, HTTPException, Request

from .errors import RemoteQueryFailed, Unauthorized
from .query_builder import fail, ok
from .readiness import ReadinessGate
from .schemas import Result
from .supabase_client import new_auth_client

logger = logging.getLogger(__name__)

RESET_PASSWORD_PATH = "/admin/reset-password.html"


def _user_dict(user) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": user.id, "email": user.email}


def _session_dict(session) -> Optional[Dict[str, Any]]:
    if session is None:
        return None
    return {
        "access_token": session.access_token,
        "refresh_token": session.refresh_token,
        "expires_at": session.expires_at,
        "user": _user_dict(session.user),
    }


class IdentityService:
    """
    Passthrough to the identity provider.

    Token checks use the shared client (stateless). Credential flows run on a
    throwaway client so a user session never lands on the shared one.
    """

    def __init__(self, gate: ReadinessGate, client_factory: Callable[[], Awaitable[Any]] = new_auth_client):
        self.gate = gate
        self.client_factory = client_factory

    async def _call(self, action: str, fn) -> Any:
        # missing backend raises BackendUnavailable before any client is built
        await self.gate.wait_for_ready()
        client = None
        try:
            client = await self.client_factory()
            return await fn(client.auth)
        except Exception as e:
            logger.warning("%s failed: %s", action, e)
            raise RemoteQueryFailed(str(e)) from e
        finally:
            if client is not None:
                # throwaway client: release its http pool
                await client.auth.close()

    async def sign_in(self, email: str, password: str) -> Result:
        try:
            res = await self._call(
                "Sign in",
                lambda auth: auth.sign_in_with_password({"email": email, "password": password}),
            )
        except RemoteQueryFailed as e:
            return fail(e)
        return ok({"user": _user_dict(res.user), "session": _session_dict(res.session)})

    async def sign_up(self, email: str, password: str, data: Optional[Dict[str, Any]] = None) -> Result:
        try:
            res = await self._call(
                "Sign up",
                lambda auth: auth.sign_up(
                    {"email": email, "password": password, "options": {"data": data or {}}}
                ),
            )
        except RemoteQueryFailed as e:
            return fail(e)
        return ok({"user": _user_dict(res.user)})

    async def _with_session(self, access_token: str, refresh_token: str, action: str, fn):
        async def run(auth):
            await auth.set_session(access_token, refresh_token)
            return await fn(auth)

        return await self._call(action, run)

    async def sign_out(self, access_token: str, refresh_token: str) -> Result:
        try:
            await self._with_session(access_token, refresh_token, "Sign out", lambda auth: auth.sign_out())
        except RemoteQueryFailed as e:
            return fail(e)
        return ok()

    async def get_session(self, access_token: str, refresh_token: str) -> Result:
        try:
            session = await self._with_session(
                access_token, refresh_token, "Get session", lambda auth: auth.get_session()
            )
        except RemoteQueryFailed as e:
            return fail(e)
        return ok(_session_dict(session))

    async def reset_password(self, email: str, site_url: str) -> Result:
        redirect_to = site_url.rstrip("/") + RESET_PASSWORD_PATH
        try:
            await self._call(
                "Password reset",
                lambda auth: auth.reset_password_for_email(email, {"redirect_to": redirect_to}),
            )
        except RemoteQueryFailed as e:
            return fail(e)
        return ok()

    async def update_password(self, access_token: str, refresh_token: str, password: str) -> Result:
        try:
            await self._with_session(
                access_token, refresh_token, "Password update",
                lambda auth: auth.update_user({"password": password}),
            )
        except RemoteQueryFailed as e:
            return fail(e)
        return ok()

    async def get_user(self, token: str) -> Optional[Dict[str, Any]]:
        client = await self.gate.wait_for_ready()
        try:
            res = await client.auth.get_user(token)
        except Exception as e:
            logger.info("Rejected token: %s", e)
            return None
        return _user_dict(res.user) if res else None

    async def watch(self, callback: Callable[[str, Any], None]):
        """Subscribe `callback(event, session)` to the provider's auth state stream."""
        client = await self.gate.wait_for_ready()
        return client.auth.on_auth_state_change(callback)


def _bearer(authorization: Optional[str]) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise Unauthorized("Falta el token de acceso")
    return authorization.split(" ", 1)[1].strip()


async def require_admin(request: Request, authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    identity: IdentityService = request.app.state.identity
    try:
        token = _bearer(authorization)
    except Unauthorized as e:
        raise HTTPException(status_code=401, detail=e.message)
    user = await identity.get_user(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Sesión inválida o expirada")
    return user
