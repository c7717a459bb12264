"""
Roles and capabilities.

WHY: Each workflow step belongs to a different actor (sales staff request and
register, the manager accepts and approves, finance prices). The table below
is the single place where that split is decided; services check it at their
entry point via permission_service.require_capability.
"""


class Role:
    MANAGER = "MANAGER"
    SALES = "SALES"
    FINANCE = "FINANCE"

    ALL = (MANAGER, SALES, FINANCE)


class Capability:
    CREATE_PURCHASE_ORDER = "CREATE_PURCHASE_ORDER"
    ACCEPT_PURCHASE_ORDER = "ACCEPT_PURCHASE_ORDER"
    REGISTER_RECEIPT = "REGISTER_RECEIPT"
    VERIFY_FINANCE = "VERIFY_FINANCE"
    APPROVE_PURCHASE_ORDER = "APPROVE_PURCHASE_ORDER"
    REJECT_PURCHASE_ORDER = "REJECT_PURCHASE_ORDER"
    CANCEL_PURCHASE_ORDER = "CANCEL_PURCHASE_ORDER"
    EDIT_REQUESTED_QUANTITIES = "EDIT_REQUESTED_QUANTITIES"
    EDIT_ACCEPTED_QUANTITIES = "EDIT_ACCEPTED_QUANTITIES"
    EDIT_REGISTERED_QUANTITIES = "EDIT_REGISTERED_QUANTITIES"
    EDIT_PRICES = "EDIT_PRICES"
    VIEW_PURCHASE_ORDERS = "VIEW_PURCHASE_ORDERS"
    VIEW_STOCK = "VIEW_STOCK"
    ADJUST_STOCK = "ADJUST_STOCK"


ROLE_CAPABILITIES = {
    Role.MANAGER: {
        Capability.CREATE_PURCHASE_ORDER,
        Capability.ACCEPT_PURCHASE_ORDER,
        Capability.REGISTER_RECEIPT,
        Capability.VERIFY_FINANCE,
        Capability.APPROVE_PURCHASE_ORDER,
        Capability.REJECT_PURCHASE_ORDER,
        Capability.CANCEL_PURCHASE_ORDER,
        Capability.EDIT_REQUESTED_QUANTITIES,
        Capability.EDIT_ACCEPTED_QUANTITIES,
        Capability.EDIT_REGISTERED_QUANTITIES,
        Capability.EDIT_PRICES,
        Capability.VIEW_PURCHASE_ORDERS,
        Capability.VIEW_STOCK,
        Capability.ADJUST_STOCK,
    },
    Role.SALES: {
        Capability.CREATE_PURCHASE_ORDER,
        Capability.REGISTER_RECEIPT,
        Capability.CANCEL_PURCHASE_ORDER,
        Capability.EDIT_REQUESTED_QUANTITIES,
        Capability.EDIT_REGISTERED_QUANTITIES,
        Capability.VIEW_PURCHASE_ORDERS,
        Capability.VIEW_STOCK,
    },
    Role.FINANCE: {
        Capability.VERIFY_FINANCE,
        Capability.EDIT_PRICES,
        Capability.VIEW_PURCHASE_ORDERS,
        Capability.VIEW_STOCK,
    },
}

# Capabilities a non-manager may only exercise on orders they created
OWNER_RESTRICTED = {
    Capability.CANCEL_PURCHASE_ORDER,
    Capability.EDIT_REQUESTED_QUANTITIES,
}


def capabilities_for(role: str) -> set[str]:
    return ROLE_CAPABILITIES.get(role, set())
