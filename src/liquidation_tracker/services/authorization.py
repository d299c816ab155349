"""Actor context and role-scoped authorization checks.

Services never look at role names directly: they ask ``has_capability`` and
the scope helpers here. Every service call receives an ``ActorContext``
built by the API layer from the authenticated user.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import Select, select

from liquidation_tracker.errors import PermissionDeniedError
from liquidation_tracker.models import HEI, Liquidation, User
from liquidation_tracker.services.roles import Capability, Role, has_capability, parse_role
from liquidation_tracker.services.state_machine import LiquidationStateMachine


@dataclass(frozen=True)
class ActorContext:
    """The user performing a request, plus request metadata."""

    user: User
    ip_address: str | None = None

    @property
    def user_id(self) -> UUID:
        return self.user.id

    @property
    def name(self) -> str:
        return self.user.name

    @property
    def role(self) -> Role:
        return parse_role(self.user.role)

    @property
    def hei_id(self) -> UUID | None:
        return self.user.hei_id

    @property
    def region_id(self) -> UUID | None:
        return self.user.region_id

    def can(self, capability: Capability) -> bool:
        return has_capability(self.user.role, capability)


def require(actor: ActorContext, capability: Capability, message: str) -> None:
    """Raise PermissionDeniedError unless the actor has the capability."""
    if not actor.can(capability):
        raise PermissionDeniedError(
            message,
            {"role": actor.user.role, "required": capability.value},
        )


def in_region(actor: ActorContext, hei_region_id: UUID | None) -> bool:
    """Check whether an HEI region falls inside the actor's region.

    An actor without a region is unrestricted.
    """
    if actor.region_id is None:
        return True
    return hei_region_id == actor.region_id


def require_region(actor: ActorContext, hei_region_id: UUID | None) -> None:
    """Region guard for RC actions. Other roles pass through."""
    if actor.can(Capability.VIEW_REGION) and not in_region(actor, hei_region_id):
        raise PermissionDeniedError("This liquidation is outside your assigned region.")


def can_view(actor: ActorContext, liquidation: Liquidation, hei_region_id: UUID | None) -> bool:
    if actor.can(Capability.VIEW_ALL):
        return True
    if actor.can(Capability.VIEW_REGION):
        return in_region(actor, hei_region_id)
    if actor.can(Capability.VIEW_OWN_HEI):
        return actor.hei_id is not None and liquidation.hei_id == actor.hei_id
    return False


def require_view(actor: ActorContext, liquidation: Liquidation, hei_region_id: UUID | None) -> None:
    if not can_view(actor, liquidation, hei_region_id):
        raise PermissionDeniedError("You do not have permission to view this liquidation.")


def scope_query(actor: ActorContext, stmt: Select) -> Select:
    """Restrict a liquidation select to what the actor may see."""
    if actor.can(Capability.VIEW_ALL):
        return stmt
    if actor.can(Capability.VIEW_REGION):
        if actor.region_id is None:
            return stmt
        region_heis = select(HEI.id).where(HEI.region_id == actor.region_id)
        return stmt.where(Liquidation.hei_id.in_(region_heis))
    if actor.can(Capability.VIEW_OWN_HEI) and actor.hei_id is not None:
        return stmt.where(Liquidation.hei_id == actor.hei_id)
    # Nothing visible
    return stmt.where(Liquidation.id.is_(None))


def can_edit(actor: ActorContext, liquidation: Liquidation, hei_region_id: UUID | None) -> bool:
    if actor.can(Capability.EDIT_ANY):
        return True
    if actor.can(Capability.EDIT_REGION):
        return in_region(actor, hei_region_id)
    if actor.can(Capability.EDIT_OWN_DRAFT):
        return (
            liquidation.created_by_id == actor.user_id
            and LiquidationStateMachine.is_editable_by_hei(liquidation.status)
        )
    return False


def authorize_update(actor: ActorContext, liquidation: Liquidation, hei_region_id: UUID | None) -> None:
    if not can_edit(actor, liquidation, hei_region_id):
        raise PermissionDeniedError("You do not have permission to edit this liquidation.")


def can_manage_beneficiaries(
    actor: ActorContext,
    liquidation: Liquidation,
    hei_region_id: UUID | None,
) -> bool:
    """Beneficiary edits: importer roles within scope, or the creating HEI user."""
    if actor.can(Capability.IMPORT_BENEFICIARIES):
        return not actor.can(Capability.VIEW_REGION) or in_region(actor, hei_region_id)
    return liquidation.created_by_id == actor.user_id and actor.can(Capability.EDIT_OWN_DRAFT)
