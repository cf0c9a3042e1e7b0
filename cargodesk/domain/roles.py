"""Role registry: maps a role name to a capability tier.

Every permission check goes through ``classify``; no other module compares
role names. Unknown or missing role names classify as ``regular``.
"""
from __future__ import annotations

import enum
from typing import Optional


class RoleTier(int, enum.Enum):
    regular = 0
    staff = 1
    manager = 2
    super_admin = 3


class RoleName(str, enum.Enum):
    super_admin = "super_admin"
    marketing_manager = "marketing_manager"
    marketing_staff = "marketing_staff"
    sales_manager = "sales_manager"
    salesperson = "salesperson"
    domestics_ops_manager = "domestics_ops_manager"
    exim_ops_manager = "exim_ops_manager"
    import_dtd_ops_manager = "import_dtd_ops_manager"
    warehouse_traffic_ops_manager = "warehouse_traffic_ops_manager"
    # not in ROLE_TIERS: classifies as regular
    requester = "requester"


ROLE_TIERS: dict[str, RoleTier] = {
    RoleName.super_admin.value: RoleTier.super_admin,
    RoleName.marketing_manager.value: RoleTier.manager,
    RoleName.sales_manager.value: RoleTier.manager,
    RoleName.domestics_ops_manager.value: RoleTier.manager,
    RoleName.exim_ops_manager.value: RoleTier.manager,
    RoleName.import_dtd_ops_manager.value: RoleTier.manager,
    RoleName.warehouse_traffic_ops_manager.value: RoleTier.manager,
    RoleName.marketing_staff.value: RoleTier.staff,
    RoleName.salesperson.value: RoleTier.staff,
}

# display names seeded into the roles table
ROLE_DISPLAY_NAMES: dict[str, str] = {
    RoleName.super_admin.value: "Super Admin",
    RoleName.marketing_manager.value: "Marketing Manager",
    RoleName.marketing_staff.value: "Marketing Staff",
    RoleName.sales_manager.value: "Sales Manager",
    RoleName.salesperson.value: "Salesperson",
    RoleName.domestics_ops_manager.value: "Domestics Ops Manager",
    RoleName.exim_ops_manager.value: "EXIM Ops Manager",
    RoleName.import_dtd_ops_manager.value: "Import DTD Ops Manager",
    RoleName.warehouse_traffic_ops_manager.value: "Warehouse & Traffic Ops Manager",
    RoleName.requester.value: "Requester",
}


def classify(role_name: Optional[str]) -> RoleTier:
    if not role_name:
        return RoleTier.regular
    return ROLE_TIERS.get(str(role_name).strip(), RoleTier.regular)


def is_manager_or_above(role_name: Optional[str]) -> bool:
    return classify(role_name) >= RoleTier.manager


def manager_role_names() -> list[str]:
    """Role names of the manager tier and above, for recipient queries."""
    return [name for name, tier in ROLE_TIERS.items() if tier >= RoleTier.manager]
