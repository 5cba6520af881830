# medistock/core/rbac.py
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Set

from medistock.core.config import settings
from medistock.services.errors import PermissionDenied

logger = logging.getLogger(__name__)


def _code(x: Any) -> str:
    """
    Normalize permission code safely.
    Supports:
      - Enum -> enum.value
      - str  -> str
      - object with .code -> str/Enum
      - dict {"code": ...}
    """
    if x is None:
        return ""

    if isinstance(x, Enum):
        return str(x.value)

    if isinstance(x, str):
        return x

    if isinstance(x, dict) and "code" in x:
        return _code(x["code"])

    if hasattr(x, "code"):
        return _code(getattr(x, "code"))

    return str(x)


def is_admin_user(user: Any) -> bool:
    if not user or not settings.ADMIN_ALL_ACCESS:
        return False
    return bool(getattr(user, "is_admin", False))


def iter_user_perm_codes(user: Any) -> Set[str]:
    """Permission codes granted through user.roles[*].permissions."""
    out: Set[str] = set()
    if not user:
        return out

    for r in getattr(user, "roles", None) or []:
        for p in getattr(r, "permissions", None) or []:
            c = _code(p).strip()
            if c:
                out.add(c)

    return out


def has_perm(user: Any, code: str) -> bool:
    if is_admin_user(user):
        return True

    want = _code(code).strip()
    if not want:
        return False

    return want in iter_user_perm_codes(user)


# =========================================================
# Authorizer collaborator (injected into services)
# =========================================================
class Authorizer:
    """authorize(actor, resource, action) -> bool"""

    def authorize(self, actor: Any, resource: str, action: str) -> bool:
        raise NotImplementedError


class RbacAuthorizer(Authorizer):
    """Grants when "<resource>.<action>" is among the actor's role permissions; admins bypass."""

    def authorize(self, actor: Any, resource: str, action: str) -> bool:
        if actor is None:
            return False
        return has_perm(actor, f"{resource}.{action}")


class AllowAll(Authorizer):
    def authorize(self, actor: Any, resource: str, action: str) -> bool:
        return True


ALLOW_ALL = AllowAll()


def ensure_allowed(authz: Authorizer, actor: Any, resource: str, action: str) -> None:
    """Raise PermissionDenied (403) unless authz grants resource.action to actor."""
    if authz.authorize(actor, resource, action):
        return
    logger.info("Denied %s.%s for user_id=%s", resource, action, getattr(actor, "id", None))
    raise PermissionDenied(f"You do not have permission to perform this action ({resource}.{action}).")
