"""
Role-based permission matrix.

Each permission codename maps to the set of roles allowed to perform it.
Route decorators (``buildtrack.middleware.permission_required``) and
services both check against this single table.

Usage:
    from buildtrack.services.permission_service import has_permission

    if has_permission("clerk", "approve_material"):
        ...
"""

ROLES = {"owner", "pm", "clerk", "supervisor", "accountant", "investor", "supplier"}

ROLE_ALIASES = {"project_manager": "pm"}

MANAGER_ROLES = frozenset({"owner", "pm"})

INTERNAL_ROLES = frozenset(ROLES - {"supplier"})

PERMISSIONS: dict[str, frozenset[str]] = {
    # Projects & phases
    "view_projects": frozenset({"owner", "pm", "clerk", "supervisor", "accountant", "investor"}),
    "create_project": MANAGER_ROLES,
    "edit_project": MANAGER_ROLES,
    "delete_project": frozenset({"owner"}),
    "manage_phases": MANAGER_ROLES,
    "delete_phase": frozenset({"owner"}),
    # Phase templates
    "view_phase_templates": frozenset({"owner", "pm", "clerk", "supervisor", "accountant"}),
    "manage_phase_templates": MANAGER_ROLES,
    "delete_phase_template": frozenset({"owner"}),
    "apply_phase_template": MANAGER_ROLES,
    # Materials
    "view_materials": frozenset({"owner", "pm", "clerk", "supervisor", "accountant"}),
    "create_material": frozenset({"owner", "pm", "clerk", "supervisor"}),
    "edit_material": frozenset({"owner", "pm", "clerk"}),
    "submit_material": frozenset({"owner", "pm", "clerk", "supervisor"}),
    "approve_material": MANAGER_ROLES,
    "reject_material": MANAGER_ROLES,
    "delete_material": frozenset({"owner"}),
    # Professional services
    "view_professional_services": frozenset({"owner", "pm", "clerk", "supervisor", "accountant"}),
    "manage_professional_services": MANAGER_ROLES,
    "delete_professional_services": frozenset({"owner"}),
    "create_professional_activity": frozenset({"owner", "pm", "clerk", "supervisor"}),
    "edit_professional_activity": frozenset({"owner", "pm", "clerk", "supervisor"}),
    "approve_professional_activity": MANAGER_ROLES,
    "reject_professional_activity": MANAGER_ROLES,
    "delete_professional_activity": frozenset({"owner"}),
    "view_professional_fees": frozenset({"owner", "pm", "accountant"}),
    "approve_professional_fee": frozenset({"owner", "pm", "accountant"}),
    "pay_professional_fee": frozenset({"owner", "accountant"}),
    # Purchase orders
    "view_purchase_orders": frozenset({"owner", "pm", "accountant", "supplier"}),
    "create_purchase_order": MANAGER_ROLES,
    "edit_purchase_order": MANAGER_ROLES,
    "delete_purchase_order": frozenset({"owner"}),
    "approve_purchase_order_modification": MANAGER_ROLES,
    "reject_purchase_order_modification": MANAGER_ROLES,
    "retry_purchase_order": MANAGER_ROLES,
    "mark_purchase_order_ready": frozenset({"owner", "pm", "supplier"}),
    "confirm_delivery": MANAGER_ROLES,
    # Finances
    "view_financing": frozenset({"owner", "pm", "accountant", "investor"}),
    "manage_investors": frozenset({"owner"}),
    "view_investors": frozenset({"owner", "accountant"}),
    "create_expense": frozenset({"owner", "pm", "accountant", "clerk"}),
    "view_expenses": frozenset({"owner", "pm", "accountant", "clerk"}),
    "approve_expense": frozenset({"owner", "pm", "accountant"}),
    "delete_expense": frozenset({"owner"}),
    "manage_initial_expenses": frozenset({"owner", "pm", "accountant"}),
    # Dashboards & audit
    "view_portfolio_dashboard": frozenset({"owner"}),
    # suppliers only reach their own orders
    "view_dashboard": INTERNAL_ROLES,
    "view_audit_logs": frozenset({"owner", "pm", "accountant"}),
}


def normalize_role(role: str | None) -> str | None:
    """Lower-case a role name and resolve aliases; unknown roles return None."""
    if not role:
        return None
    role = role.strip().lower()
    role = ROLE_ALIASES.get(role, role)
    return role if role in ROLES else None


def has_permission(role: str | None, codename: str) -> bool:
    """True when ``role`` is allowed to perform ``codename``.

    Unknown codenames deny access.
    """
    role = normalize_role(role)
    if role is None:
        return False
    return role in PERMISSIONS.get(codename, frozenset())


def has_any_permission(role: str | None, codenames: list[str]) -> bool:
    return any(has_permission(role, c) for c in codenames)


def is_manager(role: str | None) -> bool:
    """Owner and project managers bypass several per-record restrictions."""
    return normalize_role(role) in MANAGER_ROLES


def roles_for(codename: str) -> list[str]:
    return sorted(PERMISSIONS.get(codename, frozenset()))
