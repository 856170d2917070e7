"""
Permission Constants and Definitions

Centralized permission codes and the default role -> permission mapping.
Roles are stored per organization (Role/UserRole tables); the permissions
a role grants come from DEFAULT_ROLE_PERMISSIONS below.

DESIGN PRINCIPLES:
- Permissions are granular (one action per permission)
- Categories group related permissions for display
- Default role mappings follow principle of least privilege
"""

# =============================================================================
# PERMISSION CATEGORIES
# =============================================================================

class PermissionCategory:
    """Permission categories for organization."""
    PARTNERS = "PARTNERS"
    LEDGER = "LEDGER"
    SALES = "SALES"
    COSTS = "COSTS"
    USERS = "USERS"
    SYSTEM = "SYSTEM"


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    ("VIEW_PARTNERS", "View Partners", "List partners, leaderboard and partner detail", PermissionCategory.PARTNERS),
    ("MANAGE_PARTNERS", "Manage Partners", "Create partners", PermissionCategory.PARTNERS),

    ("VIEW_TRANSACTIONS", "View Transactions", "List and inspect ledger transactions", PermissionCategory.LEDGER),
    ("RECORD_CONTRIBUTION", "Record Contribution", "Record partner contributions and upload receipts", PermissionCategory.LEDGER),
    ("AMEND_TRANSACTION", "Amend Transaction", "Correct a recorded contribution", PermissionCategory.LEDGER),
    ("UNDO_TRANSACTION", "Undo Transaction", "Reverse a recorded contribution", PermissionCategory.LEDGER),
    ("SYNC_QUEUE", "Sync Offline Queue", "Submit batched offline operations", PermissionCategory.LEDGER),
    ("EXPORT_DATA", "Export Data", "Download CSV exports", PermissionCategory.LEDGER),

    ("VIEW_SALES", "View Sales", "List sales, sale detail and sales summary", PermissionCategory.SALES),
    ("CREATE_SALE", "Create Sale", "Record a sale", PermissionCategory.SALES),
    ("REFUND_SALE", "Refund Sale", "Refund a completed sale and reverse its allocations", PermissionCategory.SALES),

    ("VIEW_COSTS", "View Costs", "List cost entries and their allocations", PermissionCategory.COSTS),
    ("MANAGE_COSTS", "Manage Costs", "Create and cancel cost entries", PermissionCategory.COSTS),
    ("ALLOCATE_COSTS", "Allocate Costs", "Allocate cost entries to sales", PermissionCategory.COSTS),

    ("MANAGE_USERS", "Manage Users", "Create users and assign roles", PermissionCategory.USERS),
    ("VIEW_AUDIT_LOG", "View Audit Log", "View security events", PermissionCategory.SYSTEM),
]


# =============================================================================
# DEFAULT ROLE MAPPINGS
# =============================================================================

# WHY these mappings:
# - OWNER: full access (registers the organization)
# - BOOKKEEPER: day-to-day ledger work, no user management
# - VIEWER: read-only

_VIEW_PERMISSIONS = [
    "VIEW_PARTNERS",
    "VIEW_TRANSACTIONS",
    "VIEW_SALES",
    "VIEW_COSTS",
]

DEFAULT_ROLE_PERMISSIONS = {
    "owner": [perm[0] for perm in PERMISSION_DEFINITIONS],

    "bookkeeper": _VIEW_PERMISSIONS + [
        "MANAGE_PARTNERS",
        "RECORD_CONTRIBUTION",
        "AMEND_TRANSACTION",
        "UNDO_TRANSACTION",
        "SYNC_QUEUE",
        "EXPORT_DATA",
        "CREATE_SALE",
        "REFUND_SALE",
        "MANAGE_COSTS",
        "ALLOCATE_COSTS",
    ],

    "viewer": list(_VIEW_PERMISSIONS),
}

ROLE_NAMES = tuple(DEFAULT_ROLE_PERMISSIONS)


# =============================================================================
# PERMISSION HELPERS
# =============================================================================

def get_all_permission_codes():
    """Get list of all permission codes."""
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def get_permission_definition(code):
    """Get full definition for a permission code."""
    for perm in PERMISSION_DEFINITIONS:
        if perm[0] == code:
            return {
                "code": perm[0],
                "name": perm[1],
                "description": perm[2],
                "category": perm[3],
            }
    return None


def validate_permission_code(code):
    """Check if a permission code is valid."""
    return code in get_all_permission_codes()
