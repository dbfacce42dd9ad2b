"""Client-side session and authorization state.

`SessionController` owns the signed-in identity and the two flags derived
from backend records (`is_admin`, `must_change_password`). UI code reads an
immutable `snapshot()` and calls the operations below; none of them raise.

Auth events from `BackendClient` arrive synchronously while a backend call
is still in progress. The listener only updates local state and appends any
follow-up backend work to `self._pending`; the queue is drained once the
outer operation has returned from the backend (`run_pending`).
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Optional

from finance_tracker.config import Config
from finance_tracker.validation import is_valid_email, is_valid_password, sanitize_email

from .backend import AuthEvent, BackendClient, BackendError


def _debug(msg: str) -> None:
    print(f"[session] {msg}")


MSG_INVALID_EMAIL = "Please enter a valid email address"
MSG_PASSWORD_LENGTH = "Password must be between 8 and 128 characters"
MSG_INVALID_CREDENTIALS = "Invalid credentials"
MSG_BLOCKED = "Too many failed attempts. Please try again later."
MSG_NOW_BLOCKED = "Too many failed attempts. Please try again in {minutes} minutes."
MSG_DEACTIVATED = "Your account has been deactivated. Please contact an administrator."
MSG_PASSWORDS_DIFFER = "Passwords do not match"
MSG_PASSWORD_TOO_SHORT = "Password must be at least 8 characters long."
MSG_NOT_SIGNED_IN = "You must be signed in to do that."

# Server codes for a switched-off profile: at sign-in, and on a live token.
DEACTIVATED_CODE = "account_deactivated"
INACTIVE_CODE = "user_inactive"


@dataclass(frozen=True)
class AuthError:
    message: str


@dataclass(frozen=True)
class AuthResult:
    error: Optional[AuthError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _fail(message: str) -> AuthResult:
    return AuthResult(error=AuthError(message))


@dataclass(frozen=True)
class SessionState:
    user: Optional[Dict[str, Any]]
    session: Optional[Dict[str, Any]]
    loading: bool
    is_admin: bool
    must_change_password: bool
    failed_attempts: int
    is_blocked: bool


class SessionController:
    def __init__(
        self,
        backend: BackendClient,
        *,
        clock: Callable[[], float] = time.monotonic,
        max_failed_attempts: int = 5,
        block_seconds: float = 15 * 60,
        user_agent: Optional[str] = "finance-tracker-client",
    ):
        self.backend = backend
        self._clock = clock
        self.max_failed_attempts = int(max_failed_attempts)
        self.block_seconds = float(block_seconds)
        self.user_agent = user_agent

        self._user: Optional[Dict[str, Any]] = None
        self._session: Optional[Dict[str, Any]] = None
        self._loading = True
        self._is_admin = False
        self._must_change_password = False
        self._failed_attempts = 0
        self._blocked_until: Optional[float] = None

        self._pending: Deque[Callable[[], None]] = deque()
        self._unsubscribe: Optional[Callable[[], None]] = None

    @classmethod
    def from_config(cls, backend: BackendClient, cfg: Config, **kwargs: Any) -> "SessionController":
        return cls(
            backend,
            max_failed_attempts=cfg.LOGIN_MAX_FAILED_ATTEMPTS,
            block_seconds=cfg.LOGIN_BLOCK_MINUTES * 60,
            **kwargs,
        )

    # -----------------------------
    # Lifecycle
    # -----------------------------

    def initialize(self) -> AuthResult:
        """Subscribe to auth events and pick up an existing session, if any."""
        if self._unsubscribe is None:
            self._unsubscribe = self.backend.subscribe(self._on_auth_event)

        result = AuthResult()
        try:
            session = self.backend.get_session()
        except BackendError as e:
            _debug(f"initial session lookup failed: {e.message}")
            session = None
            result = _fail(e.message)

        self._set_session(session)
        if self._user is not None:
            self._refresh_flags(str(self._user["user_id"]))
        self._loading = False
        self.run_pending()
        return result

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._pending.clear()

    def snapshot(self) -> SessionState:
        self._expire_block()
        return SessionState(
            user=self._user,
            session=self._session,
            loading=self._loading,
            is_admin=self._is_admin,
            must_change_password=self._must_change_password,
            failed_attempts=self._failed_attempts,
            is_blocked=self.is_blocked,
        )

    # -----------------------------
    # Listener + deferred work
    # -----------------------------

    def _set_session(self, session: Optional[Dict[str, Any]]) -> None:
        self._session = session
        self._user = (session or {}).get("user")
        if self._user is None:
            self._is_admin = False
            self._must_change_password = False

    def _on_auth_event(self, event: AuthEvent, session: Optional[Dict[str, Any]]) -> None:
        # Runs inside a backend call: no backend calls from here.
        self._set_session(session)
        if self._user is not None:
            user_id = str(self._user["user_id"])
            self._pending.append(lambda: self._refresh_flags(user_id))
            if event == AuthEvent.SIGNED_IN:
                self._pending.append(lambda: self._record_login(user_id))
        self._loading = False

    def run_pending(self) -> None:
        """Run queued follow-up work. Tasks queued while draining run too."""
        while self._pending:
            task = self._pending.popleft()
            try:
                task()
            except Exception as e:
                _debug(f"deferred task failed: {e!r}")

    def _current_user_id(self) -> Optional[str]:
        return str(self._user["user_id"]) if self._user is not None else None

    def _refresh_flags(self, user_id: str) -> None:
        if self._current_user_id() != user_id:
            return
        try:
            self._is_admin = self.backend.get_role() == "admin"
        except BackendError:
            self._is_admin = False
        try:
            self._must_change_password = bool(self.backend.get_profile().get("must_change_password"))
        except BackendError:
            self._must_change_password = False

    def _record_login(self, user_id: str) -> None:
        if self._current_user_id() != user_id:
            return
        try:
            self.backend.record_login(self.user_agent)
        except BackendError as e:
            _debug(f"Error recording login history: {e.message}")

    # -----------------------------
    # Throttle
    # -----------------------------

    def _expire_block(self) -> None:
        if self._blocked_until is not None and self._clock() >= self._blocked_until:
            self._blocked_until = None
            self._failed_attempts = 0

    @property
    def is_blocked(self) -> bool:
        return self._blocked_until is not None and self._clock() < self._blocked_until

    def _register_failure(self) -> AuthResult:
        self._failed_attempts += 1
        if self._failed_attempts >= self.max_failed_attempts:
            self._blocked_until = self._clock() + self.block_seconds
            minutes = int(round(self.block_seconds / 60))
            return _fail(MSG_NOW_BLOCKED.format(minutes=minutes))
        return _fail(MSG_INVALID_CREDENTIALS)

    # -----------------------------
    # Operations
    # -----------------------------

    def sign_in(self, email: str, password: str) -> AuthResult:
        self._expire_block()
        if self._blocked_until is not None:
            return _fail(MSG_BLOCKED)

        e = sanitize_email(email)
        if not is_valid_email(e):
            return _fail(MSG_INVALID_EMAIL)
        # Password rules are not revealed on sign-in.
        if not is_valid_password(password or ""):
            return _fail(MSG_INVALID_CREDENTIALS)

        try:
            self.backend.sign_in_with_password(e, password)
        except BackendError as err:
            _debug(f"sign-in failed status={err.status}")
            if err.status == 403 and err.message == DEACTIVATED_CODE:
                return _fail(MSG_DEACTIVATED)
            return self._register_failure()

        self._failed_attempts = 0
        self._blocked_until = None

        result = AuthResult()
        try:
            profile: Optional[Dict[str, Any]] = self.backend.get_profile()
        except BackendError as err:
            _debug(f"profile lookup after sign-in failed: {err.message}")
            profile = {"is_active": False} if err.message == INACTIVE_CODE else None
        if profile is not None and not profile.get("is_active", True):
            self._force_sign_out()
            result = _fail(MSG_DEACTIVATED)

        self.run_pending()
        return result

    def sign_up(self, email: str, password: str, *, full_name: Optional[str] = None) -> AuthResult:
        e = sanitize_email(email)
        if not is_valid_email(e):
            return _fail(MSG_INVALID_EMAIL)
        if not is_valid_password(password or ""):
            return _fail(MSG_PASSWORD_LENGTH)

        try:
            self.backend.sign_up(e, password, full_name=full_name)
        except BackendError as err:
            return _fail(err.message)
        self.run_pending()
        return AuthResult()

    def _force_sign_out(self) -> None:
        try:
            self.backend.sign_out()
        except BackendError as err:
            _debug(f"sign-out failed: {err.message}")
        finally:
            self._set_session(None)

    def sign_out(self) -> AuthResult:
        result = AuthResult()
        try:
            self.backend.sign_out()
        except BackendError as err:
            result = _fail(err.message)
        finally:
            self._set_session(None)
            self._pending.clear()
        return result

    def change_password(self, new_password: str, confirm_password: str) -> AuthResult:
        if self._user is None:
            return _fail(MSG_NOT_SIGNED_IN)
        if new_password != confirm_password:
            return _fail(MSG_PASSWORDS_DIFFER)
        if len(new_password or "") < 8:
            return _fail(MSG_PASSWORD_TOO_SHORT)

        try:
            self.backend.update_password(new_password)
            self.backend.update_profile(must_change_password=False, temp_password=None)
        except BackendError as err:
            self.run_pending()
            return _fail(err.message)

        self._must_change_password = False
        self.run_pending()
        return AuthResult()

    def request_password_reset(self, email: str) -> AuthResult:
        e = sanitize_email(email)
        if not is_valid_email(e):
            return _fail(MSG_INVALID_EMAIL)
        try:
            self.backend.reset_password_for_email(e)
        except BackendError as err:
            return _fail(err.message)
        return AuthResult()
