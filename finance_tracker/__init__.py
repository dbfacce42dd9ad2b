"""Personal finance tracker - backend, admin gateway and client session layer.

- Users keep income, expense and savings records scoped to their own account.
- Administrators manage accounts through a single gateway endpoint that
  re-checks the caller's stored role on every call.
- The client package wraps the HTTP API and owns the sign-in state.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
