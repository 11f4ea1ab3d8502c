from dataclasses import dataclass
from typing import Iterable, Optional
import uuid

from stocktake.config import settings
from stocktake.core.exceptions import PermissionDeniedError


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as supplied by the identity provider."""
    id: uuid.UUID
    role: str


def has_audit_access(role: Optional[str], audit_roles: Optional[Iterable[str]] = None) -> bool:
    """
    Check whether a role may operate in audit mode.

    Audit mode covers stage-4 counts, bulk confirmation, closure and ERP
    migration. Role comparison is case-insensitive.
    """
    if not role:
        return False
    allowed = audit_roles if audit_roles is not None else settings.AUDIT_ROLES
    return role.strip().lower() in {r.lower() for r in allowed}


def require_audit_access(actor: Actor, action: str) -> None:
    """Raise PermissionDeniedError unless the actor holds audit capability."""
    if not has_audit_access(actor.role):
        raise PermissionDeniedError(
            f"Role '{actor.role}' is not allowed to {action}. "
            f"Audit access is required.",
            error_code="AUDIT_ACCESS_REQUIRED",
            details={"role": actor.role, "action": action},
        )
