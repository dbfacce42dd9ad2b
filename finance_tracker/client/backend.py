"""HTTP client for the finance tracker API.

Holds the current session (bearer token + user) and notifies subscribers of
auth state changes. Subscribers are called synchronously from inside the
client call that changed the state, so they must not call back into the
client; `SessionController` queues its follow-up work instead.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import requests

from finance_tracker.config import Config


def _debug(msg: str) -> None:
    print(f"[backend] {msg}")


class AuthEvent(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


AuthListener = Callable[[AuthEvent, Optional[Dict[str, Any]]], None]


class BackendError(Exception):
    """A non-2xx answer (or transport failure, status 0) from the API."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


def _error_message(resp: Any) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(data, dict):
        msg = data.get("error") or data.get("detail") or data.get("message")
        if msg:
            return msg if isinstance(msg, str) else str(msg)
    return resp.text or f"HTTP {resp.status_code}"


class BackendClient:
    """Thin wrapper over the auth, REST and function endpoints.

    `http` may be any object with a requests-style `request()` method
    (a `requests.Session`, or a FastAPI `TestClient` in tests).
    """

    def __init__(
        self,
        base_url: str,
        *,
        http: Any = None,
        timeout: Optional[float] = 30.0,
        session: Optional[Dict[str, Any]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.http = http if http is not None else requests.Session()
        self.timeout = timeout
        self._session: Optional[Dict[str, Any]] = session
        self._listeners: List[AuthListener] = []

    @classmethod
    def from_config(cls, cfg: Config, *, http: Any = None) -> "BackendClient":
        return cls(cfg.API_BASE_URL, http=http, timeout=cfg.API_TIMEOUT_SECONDS)

    # -----------------------------
    # Plumbing
    # -----------------------------

    @property
    def session(self) -> Optional[Dict[str, Any]]:
        return self._session

    @property
    def access_token(self) -> Optional[str]:
        return (self._session or {}).get("access_token")

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register an auth state listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, event: AuthEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, self._session)
            except Exception as e:
                _debug(f"auth listener failed on {event.value}: {e!r}")

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        content: Optional[bytes] = None,
        auth: bool = True,
        raw: bool = False,
    ) -> Any:
        headers: Dict[str, str] = {}
        if auth and self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"

        kwargs: Dict[str, Any] = {"headers": headers}
        if json is not None:
            kwargs["json"] = json
        if params:
            kwargs["params"] = {k: v for k, v in params.items() if v is not None}
        if content is not None:
            headers["Content-Type"] = "application/octet-stream"
            kwargs["data" if isinstance(self.http, requests.Session) else "content"] = content
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout

        url = f"{self.base_url}{path}"
        try:
            resp = self.http.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise BackendError(0, str(e))

        if resp.status_code >= 400:
            raise BackendError(resp.status_code, _error_message(resp))
        if raw:
            return resp.content
        if not resp.content:
            return None
        return resp.json()

    # -----------------------------
    # Auth
    # -----------------------------

    def sign_up(self, email: str, password: str, *, full_name: Optional[str] = None) -> Dict[str, Any]:
        data = self._request(
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": password, "full_name": full_name},
            auth=False,
        )
        self._session = data.get("session")
        self._emit(AuthEvent.SIGNED_IN)
        return data

    def sign_in_with_password(self, email: str, password: str) -> Dict[str, Any]:
        data = self._request("POST", "/auth/v1/token", json={"email": email, "password": password}, auth=False)
        self._session = data
        self._emit(AuthEvent.SIGNED_IN)
        return data

    def get_session(self) -> Optional[Dict[str, Any]]:
        """Return the stored session if the backend still accepts its token.

        An expired or revoked token clears the stored session.
        """
        if self._session is None:
            return None
        try:
            data = self._request("GET", "/auth/v1/user")
        except BackendError as e:
            if e.status == 401:
                _debug(f"stored session rejected: {e.message}")
                self._session = None
                return None
            raise
        self._session = {**self._session, "user": data["user"]}
        return self._session

    def refresh_session(self) -> Dict[str, Any]:
        data = self._request("POST", "/auth/v1/token/refresh")
        self._session = data
        self._emit(AuthEvent.TOKEN_REFRESHED)
        return data

    def sign_out(self) -> None:
        """Drop the local session. The server call is best effort but errors still propagate."""
        had_session = self._session is not None
        try:
            if had_session:
                self._request("POST", "/auth/v1/logout")
        finally:
            self._session = None
            if had_session:
                self._emit(AuthEvent.SIGNED_OUT)

    def update_password(self, password: str) -> Dict[str, Any]:
        data = self._request("PUT", "/auth/v1/user", json={"password": password})
        if self._session is not None:
            self._session = {**self._session, "user": data["user"]}
        self._emit(AuthEvent.USER_UPDATED)
        return data["user"]

    def reset_password_for_email(self, email: str) -> None:
        self._request("POST", "/auth/v1/recover", json={"email": email}, auth=False)

    def confirm_password_reset(self, token: str, password: str) -> None:
        self._request("POST", "/auth/v1/recover/confirm", json={"token": token, "password": password}, auth=False)

    # -----------------------------
    # Own rows
    # -----------------------------

    def get_profile(self) -> Dict[str, Any]:
        return self._request("GET", "/rest/profile")["profile"]

    def update_profile(self, **fields: Any) -> Dict[str, Any]:
        return self._request("PATCH", "/rest/profile", json=fields)["profile"]

    def get_role(self) -> str:
        return self._request("GET", "/rest/role")["role"]

    def record_login(self, user_agent: Optional[str] = None) -> Dict[str, Any]:
        return self._request("POST", "/rest/login_history", json={"user_agent": user_agent})["record"]

    def list_records(self, kind: str, *, date_from: Optional[str] = None, date_to: Optional[str] = None) -> List[Dict[str, Any]]:
        data = self._request("GET", f"/rest/records/{kind}", params={"date_from": date_from, "date_to": date_to})
        return data["records"]

    def add_record(self, kind: str, values: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"/rest/records/{kind}", json=values)["record"]

    def export_workbook(self, *, year: Optional[int] = None, month: Optional[int] = None) -> bytes:
        return self._request("GET", "/rest/export", params={"year": year, "month": month}, raw=True)

    def import_workbook(self, data: bytes) -> Dict[str, Any]:
        return self._request("POST", "/rest/import", content=data)

    # -----------------------------
    # Admin surfaces
    # -----------------------------

    def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Authenticated call to any API path (used by `AdminApi`)."""
        return self._request(method, path, **kwargs)

    def invoke_function(self, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", f"/functions/v1/{name}", json=body)
