# ==============================================================================
# Defines the Authorization (AuthZ) interface for the API and its single
# implementation: capability resolution against the operator/assistant arrays
# embedded in Event documents.
# ==============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Protocol

from fastapi import HTTPException, status

logger = logging.getLogger(__name__)

# --- Capabilities ---
ADMIN = "admin"
MANAGE_EVENT = "manage_event"
CREATE_ACTIVITY = "create_activity"
MANAGE_ACTIVITY = "manage_activity"
MANAGE_WITNESSES = "manage_witnesses"
MANAGE_ASSISTANTS = "manage_assistants"
MANAGE_TICKETS = "manage_tickets"
OPERATE = "operate"
VIEW = "view"
CONTRIBUTE_PHOTOS = "contribute_photos"
OWN = "own"

ALL_CAPABILITIES: FrozenSet[str] = frozenset({
    ADMIN, MANAGE_EVENT, CREATE_ACTIVITY, MANAGE_ACTIVITY, MANAGE_WITNESSES,
    MANAGE_ASSISTANTS, MANAGE_TICKETS, OPERATE, VIEW, CONTRIBUTE_PHOTOS, OWN,
})

# What each operator role may do on the event it is attached to.
# ADMIN and OWN are never granted through an operator entry.
OPERATOR_ROLE_CAPABILITIES: Dict[str, FrozenSet[str]] = {
    "general": frozenset({
        MANAGE_EVENT, CREATE_ACTIVITY, MANAGE_ACTIVITY, MANAGE_WITNESSES,
        MANAGE_ASSISTANTS, MANAGE_TICKETS, OPERATE,
    }),
    "activity": frozenset({CREATE_ACTIVITY, MANAGE_ACTIVITY, MANAGE_WITNESSES, OPERATE}),
    "assistant": frozenset({MANAGE_ASSISTANTS, MANAGE_WITNESSES, MANAGE_TICKETS, OPERATE}),
}

# Capabilities an "activity" operator only holds for activities in its list
ACTIVITY_SCOPED: Dict[str, FrozenSet[str]] = {
    "activity": frozenset({MANAGE_ACTIVITY, MANAGE_WITNESSES}),
}


@dataclass(frozen=True)
class ResourceScope:
    """
    What the resolver needs to know about the target of an action.

    operators/assistants come from the owning Event (for an Activity, from its
    parent event). activity_id narrows the check to one activity; owner_id is
    the user that owns a Ticket, File or Calification.
    """
    operators: List[Mapping[str, Any]] = field(default_factory=list)
    assistants: List[Any] = field(default_factory=list)
    is_public: bool = False
    activity_id: Optional[Any] = None
    owner_id: Optional[Any] = None

    @classmethod
    def for_event(cls, event: Optional[Mapping[str, Any]], activity_id: Any = None,
                  owner_id: Any = None) -> "ResourceScope":
        if not event:
            return cls(activity_id=activity_id, owner_id=owner_id)
        return cls(
            operators=list(event.get("operators") or []),
            assistants=list(event.get("assistants") or []),
            is_public=bool(event.get("isPublic", True)),
            activity_id=activity_id,
            owner_id=owner_id,
        )

    @classmethod
    def owned_by(cls, owner_id: Any) -> "ResourceScope":
        return cls(owner_id=owner_id)


def _same(left: Any, right: Any) -> bool:
    return left is not None and right is not None and str(left) == str(right)


def operator_entries(actor_id: Any, operators: List[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    """All operator entries belonging to the actor (normally zero or one)."""
    return [op for op in operators or [] if _same(op.get("user"), actor_id)]


def is_operator(actor_id: Any, operators: List[Mapping[str, Any]]) -> bool:
    return bool(operator_entries(actor_id, operators))


def is_assistant(actor_id: Any, assistants: List[Any]) -> bool:
    return any(_same(a, actor_id) for a in assistants or [])


def _operator_grants(entry: Mapping[str, Any], capability: str, activity_id: Any) -> bool:
    role = entry.get("role", "general")
    if capability not in OPERATOR_ROLE_CAPABILITIES.get(role, frozenset()):
        return False
    if capability in ACTIVITY_SCOPED.get(role, frozenset()):
        # Witness management on the event itself has no activity to scope to
        if activity_id is None:
            return False
        return any(_same(a, activity_id) for a in entry.get("activities") or [])
    return True


def resolve_capability(actor: Optional[Mapping[str, Any]], scope: ResourceScope, capability: str) -> bool:
    """
    Answers "may this actor use this capability on this resource".

    Pure function: no I/O, the scope already carries everything needed.
    """
    if capability not in ALL_CAPABILITIES:
        raise ValueError(f"Unknown capability: {capability!r}")

    if capability == VIEW and scope.is_public:
        return True

    if not actor:
        return False

    if actor.get("role") == "admin":
        return True

    actor_id = actor.get("_id")

    if capability == OWN:
        return _same(scope.owner_id, actor_id)

    if capability == VIEW:
        return is_operator(actor_id, scope.operators) or is_assistant(actor_id, scope.assistants)

    if capability == CONTRIBUTE_PHOTOS:
        return is_operator(actor_id, scope.operators) or is_assistant(actor_id, scope.assistants)

    return any(
        _operator_grants(entry, capability, scope.activity_id)
        for entry in operator_entries(actor_id, scope.operators)
    )


class AuthorizationProvider(Protocol):
    """
    Defines the "contract" for the authorization provider kept on app.state.
    """

    def check(self, actor: Optional[Mapping[str, Any]], scope: ResourceScope, capability: str) -> bool:
        ...

    def require(self, actor: Optional[Mapping[str, Any]], scope: ResourceScope, capability: str,
                detail: Optional[str] = None) -> None:
        ...


class OperatorRoleProvider:
    """
    AuthorizationProvider backed by `resolve_capability`.

    `require` turns a denial into the HTTP error the handlers expect: 401 when
    there is no authenticated actor, 403 otherwise.
    """

    def check(self, actor: Optional[Mapping[str, Any]], scope: ResourceScope, capability: str) -> bool:
        return resolve_capability(actor, scope, capability)

    def require(self, actor: Optional[Mapping[str, Any]], scope: ResourceScope, capability: str,
                detail: Optional[str] = None) -> None:
        if self.check(actor, scope, capability):
            return

        actor_label = str(actor.get("_id")) if actor else "anonymous"
        logger.warning(f"Access DENIED for '{actor_label}' (capability '{capability}').")

        if not actor:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not authorized, no token provided",
            )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail or f"You do not have permission to perform '{capability}' on this resource",
        )
