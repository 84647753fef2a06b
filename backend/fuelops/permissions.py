"""
Permission Constants and Role Mappings

WHY: Each console screen maps to one job (cashier confirms payment, release
officer loads trucks, security clears the gate). Permission codes keep the
routes independent of role names so a role can be widened without touching
route code.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- Roles are fixed; users carry exactly one role
- Admin has all permissions
"""

# =============================================================================
# PERMISSION CATEGORIES
# =============================================================================

class PermissionCategory:
    """Permission categories for organization."""
    ORDERS = "ORDERS"
    PFIS = "PFIS"
    BANKING = "BANKING"
    AUDIT = "AUDIT"
    SYSTEM = "SYSTEM"


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    # ORDER PERMISSIONS
    (
        "VIEW_ORDERS",
        "View Orders",
        "View orders and their history",
        PermissionCategory.ORDERS
    ),
    (
        "CREATE_ORDER",
        "Create Order",
        "Place new orders for customers",
        PermissionCategory.ORDERS
    ),
    (
        "CONFIRM_PAYMENT",
        "Confirm Payment",
        "Move a pending order to paid",
        PermissionCategory.ORDERS
    ),
    (
        "RELEASE_ORDER",
        "Release Order",
        "Record loading details and release a paid order",
        PermissionCategory.ORDERS
    ),
    (
        "CONFIRM_TRUCK_EXIT",
        "Confirm Truck Exit",
        "Clear a released truck at the gate",
        PermissionCategory.ORDERS
    ),
    (
        "CANCEL_ORDER",
        "Cancel Order",
        "Cancel a pending order",
        PermissionCategory.ORDERS
    ),

    # PFI PERMISSIONS
    (
        "VIEW_PFIS",
        "View PFIs",
        "View PFIs and their derived totals",
        PermissionCategory.PFIS
    ),
    (
        "MANAGE_PFIS",
        "Manage PFIs",
        "Create and finish PFIs, assign released orders to a PFI",
        PermissionCategory.PFIS
    ),

    # BANKING PERMISSIONS
    (
        "VIEW_BANK_ACCOUNTS",
        "View Bank Accounts",
        "List settlement accounts",
        PermissionCategory.BANKING
    ),
    (
        "MANAGE_BANK_ACCOUNTS",
        "Manage Bank Accounts",
        "Create, edit and deactivate settlement accounts",
        PermissionCategory.BANKING
    ),

    # AUDIT PERMISSIONS
    (
        "VIEW_AUDIT_LOG",
        "View Audit Log",
        "Search the order audit log",
        PermissionCategory.AUDIT
    ),

    # SYSTEM PERMISSIONS
    (
        "SYSTEM_ADMIN",
        "System Administration",
        "Manage products and their list prices",
        PermissionCategory.SYSTEM
    ),
]


# =============================================================================
# DEFAULT ROLE MAPPINGS
# =============================================================================

ROLE_PERMISSIONS = {
    "admin": [perm[0] for perm in PERMISSION_DEFINITIONS],

    "finance": [
        "VIEW_ORDERS",
        "CONFIRM_PAYMENT",
        "CANCEL_ORDER",
        "VIEW_PFIS",
        "VIEW_BANK_ACCOUNTS",
        "MANAGE_BANK_ACCOUNTS",
        "VIEW_AUDIT_LOG",
    ],

    "release_officer": [
        "VIEW_ORDERS",
        "RELEASE_ORDER",
        "VIEW_PFIS",
        "MANAGE_PFIS",
    ],

    "security": [
        "VIEW_ORDERS",
        "CONFIRM_TRUCK_EXIT",
    ],

    "sales": [
        "VIEW_ORDERS",
        "CREATE_ORDER",
        "CANCEL_ORDER",
        "VIEW_PFIS",
        "VIEW_BANK_ACCOUNTS",
    ],

    "auditor": [
        "VIEW_ORDERS",
        "VIEW_PFIS",
        "VIEW_BANK_ACCOUNTS",
        "VIEW_AUDIT_LOG",
    ],
}

VALID_ROLES = set(ROLE_PERMISSIONS)


# =============================================================================
# PERMISSION HELPERS
# =============================================================================

def get_all_permission_codes():
    """Get list of all permission codes."""
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def get_role_permissions(role):
    """Permission codes granted to a role; unknown roles get none."""
    return set(ROLE_PERMISSIONS.get(role, ()))


def validate_permission_code(code):
    """Check if a permission code is valid."""
    return code in get_all_permission_codes()
