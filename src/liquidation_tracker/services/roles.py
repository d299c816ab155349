"""Roles and the capability table used by every authorization check."""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """User role values."""

    SUPER_ADMIN = "Super Admin"
    ADMIN = "Admin"
    REGIONAL_COORDINATOR = "Regional Coordinator"
    ACCOUNTANT = "Accountant"
    HEI = "HEI"


class Capability(str, Enum):
    """Things a role may do."""

    CREATE_LIQUIDATION = "create_liquidation"
    BULK_IMPORT = "bulk_import"
    IMPORT_BENEFICIARIES = "import_beneficiaries"
    EDIT_ANY = "edit_any"
    EDIT_REGION = "edit_region"
    EDIT_OWN_DRAFT = "edit_own_draft"
    ENDORSE_TO_ACCOUNTING = "endorse_to_accounting"
    RETURN_TO_HEI = "return_to_hei"
    ENDORSE_TO_COA = "endorse_to_coa"
    RETURN_TO_RC = "return_to_rc"
    MANAGE_LEDGER = "manage_ledger"
    VIEW_ALL = "view_all"
    VIEW_REGION = "view_region"
    VIEW_OWN_HEI = "view_own_hei"
    DELETE_ANY_DOCUMENT = "delete_any_document"


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.SUPER_ADMIN: frozenset({
        Capability.CREATE_LIQUIDATION,
        Capability.BULK_IMPORT,
        Capability.IMPORT_BENEFICIARIES,
        Capability.EDIT_ANY,
        Capability.ENDORSE_TO_ACCOUNTING,
        Capability.RETURN_TO_HEI,
        Capability.ENDORSE_TO_COA,
        Capability.RETURN_TO_RC,
        Capability.MANAGE_LEDGER,
        Capability.VIEW_ALL,
        Capability.DELETE_ANY_DOCUMENT,
    }),
    Role.ADMIN: frozenset({
        Capability.CREATE_LIQUIDATION,
        Capability.BULK_IMPORT,
        Capability.IMPORT_BENEFICIARIES,
        Capability.EDIT_ANY,
        Capability.MANAGE_LEDGER,
        Capability.VIEW_ALL,
        Capability.DELETE_ANY_DOCUMENT,
    }),
    Role.REGIONAL_COORDINATOR: frozenset({
        Capability.BULK_IMPORT,
        Capability.IMPORT_BENEFICIARIES,
        Capability.EDIT_REGION,
        Capability.ENDORSE_TO_ACCOUNTING,
        Capability.RETURN_TO_HEI,
        Capability.MANAGE_LEDGER,
        Capability.VIEW_REGION,
    }),
    Role.ACCOUNTANT: frozenset({
        Capability.ENDORSE_TO_COA,
        Capability.RETURN_TO_RC,
        Capability.MANAGE_LEDGER,
        Capability.VIEW_ALL,
    }),
    Role.HEI: frozenset({
        Capability.CREATE_LIQUIDATION,
        Capability.EDIT_OWN_DRAFT,
        Capability.VIEW_OWN_HEI,
    }),
}


def parse_role(value: str | Role) -> Role:
    """Coerce a stored role value to ``Role``. Raises ValueError if unknown."""
    if isinstance(value, Role):
        return value
    return Role(value)


def has_capability(role: str | Role, capability: Capability) -> bool:
    """Check if a role carries a capability."""
    try:
        resolved = parse_role(role)
    except ValueError:
        return False
    return capability in ROLE_CAPABILITIES[resolved]


def capabilities_for(role: str | Role) -> frozenset[Capability]:
    """Get all capabilities of a role (empty for unknown roles)."""
    try:
        return ROLE_CAPABILITIES[parse_role(role)]
    except ValueError:
        return frozenset()
