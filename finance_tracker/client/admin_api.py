from __future__ import annotations

from typing import Any, Dict, List, Optional

from .backend import BackendClient, BackendError


ADMIN_FUNCTION = "admin-users"

SESSION_EXPIRED = "Session expired. Please log in again."


class AdminApiError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class AdminApi:
    """Client for the admin gateway and the admin REST routes.

    Every method raises `AdminApiError` with the server's message on failure.
    """

    def __init__(self, backend: BackendClient):
        self.backend = backend

    def _require_session(self) -> None:
        if not self.backend.access_token:
            raise AdminApiError(SESSION_EXPIRED, 401)

    def call(self, action: str, **params: Any) -> Dict[str, Any]:
        self._require_session()
        try:
            return self.backend.invoke_function(ADMIN_FUNCTION, {"action": action, **params})
        except BackendError as e:
            raise AdminApiError(e.message, e.status)

    def _rest(self, method: str, path: str, **kwargs: Any) -> Any:
        self._require_session()
        try:
            return self.backend.request(method, path, **kwargs)
        except BackendError as e:
            raise AdminApiError(e.message, e.status)

    # -----------------------------
    # Gateway actions
    # -----------------------------

    def get_stats(self) -> Dict[str, Any]:
        return self.call("get_stats")

    def get_users(self) -> List[Dict[str, Any]]:
        return self.call("get_users")["users"]

    def create_user(self, email: str, full_name: str, role: str = "user") -> Dict[str, Any]:
        return self.call("create_user", email=email, full_name=full_name, role=role)

    def update_user(
        self,
        user_id: str,
        *,
        full_name: Optional[str] = None,
        is_active: Optional[bool] = None,
        role: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self.call("update_user", user_id=user_id, full_name=full_name, is_active=is_active, role=role)

    def reset_password(self, user_id: str) -> Dict[str, Any]:
        return self.call("reset_password", user_id=user_id)

    def delete_user(self, user_id: str) -> Dict[str, Any]:
        return self.call("delete_user", user_id=user_id)

    def get_login_history(self, user_id: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.call("get_login_history", user_id=user_id, limit=limit)["history"]

    def get_user_financial_data(self, user_id: str) -> Dict[str, Any]:
        return self.call("get_user_financial_data", user_id=user_id)

    # -----------------------------
    # Access requests / login history
    # -----------------------------

    def list_access_requests(self, status: str = "pending", q: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._rest("GET", "/rest/access_requests", params={"status": status, "q": q})["requests"]

    def approve_access_request(self, request_id: int, role: str = "user") -> Dict[str, Any]:
        return self._rest("POST", f"/rest/access_requests/{int(request_id)}/approve", json={"role": role})

    def reject_access_request(self, request_id: int, reason: Optional[str] = None) -> None:
        self._rest("POST", f"/rest/access_requests/{int(request_id)}/reject", json={"reason": reason})

    def delete_access_request(self, request_id: int) -> None:
        self._rest("DELETE", f"/rest/access_requests/{int(request_id)}")

    def delete_login_record(self, record_id: int) -> None:
        self._rest("DELETE", f"/rest/login_history/{int(record_id)}")

    def clear_login_history(self) -> int:
        return int(self._rest("DELETE", "/rest/login_history")["deleted"])
