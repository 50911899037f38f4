"""
Caller identity. Authentication happens upstream (gateway / web app);
this service trusts the X-User-Id header it forwards. Controlled by
FF_USE_HEADER_AUTH.
"""

from dataclasses import dataclass

from .flags import get_flags


@dataclass
class AuthenticatedUser:
    user_id: str
    email: str = ""
    role: str = "user"


# Dev-mode user — returned when FF_USE_HEADER_AUTH=false
DEV_USER = AuthenticatedUser(user_id="dev-user", email="dev@local", role="admin")


def resolve_user(user_id_header: str = "", email_header: str = "") -> AuthenticatedUser:
    """Resolve the current user from forwarded identity headers."""
    if not get_flags().use_header_auth:
        return DEV_USER

    user_id = user_id_header.strip()
    if not user_id:
        raise PermissionError("Missing X-User-Id header")
    return AuthenticatedUser(user_id=user_id, email=email_header.strip())
