"""Privileged administration: the admin gateway, access requests and login history."""

from .gateway import ACTIONS, AdminAction, GatewayError, handle_admin_request

__all__ = ["ACTIONS", "AdminAction", "GatewayError", "handle_admin_request"]
