"""Role names, page keys and default grants.

Role strings are the values stored in ``users.role`` and in both permission
tables. Never rename a role silently; stored rows reference these strings.
"""
from __future__ import annotations
from typing import Dict, List, Optional

ROLE_SUPER_ADMIN = 'super admin'
ROLE_ADMIN = 'admin'
ROLE_FINANCE = 'finance'
ROLE_PIC_BRANCH = 'pic_branch'
ROLE_STAFF = 'staff'
ROLE_GUEST = 'guest'

ALL_ROLES = (ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_FINANCE, ROLE_PIC_BRANCH, ROLE_STAFF, ROLE_GUEST)

# Roles that bypass branch scoping and may force-release locks
ADMIN_TIER = frozenset({ROLE_SUPER_ADMIN, ROLE_ADMIN})

# Legacy spellings found in stored rows and identity payloads
ROLE_ALIASES = {
    'super_admin': ROLE_SUPER_ADMIN,
    'superadmin': ROLE_SUPER_ADMIN,
    'pic': ROLE_PIC_BRANCH,
    'pic branch': ROLE_PIC_BRANCH,
}

PAGE_DASHBOARD = 'dashboard'
PAGE_USERS = 'users'
PAGE_BRANCHES = 'branches'
PAGE_PURCHASE_ORDERS = 'purchaseorder'
PAGE_PETTY_CASH = 'pettycash'
PAGE_PAYMENT_TERMS = 'payment-terms'
PAGE_FINANCE = 'finance'
PAGE_AUDIT_LOG = 'audit-log'
PAGE_PERMISSIONS = 'permissions-db'
PAGE_CRUD_PERMISSIONS = 'crud-permissions'

ALL_PAGES = [
    'ready', 'produksi', 'produksi_detail', 'gudang', 'analysis', 'esb',
    'product_name', 'product_settings', 'categories', 'recipes', 'supplier',
    'stock_opname_batch', PAGE_BRANCHES, PAGE_USERS, PAGE_PURCHASE_ORDERS,
    PAGE_PETTY_CASH, PAGE_PAYMENT_TERMS, PAGE_FINANCE, PAGE_AUDIT_LOG,
    PAGE_PERMISSIONS, PAGE_CRUD_PERMISSIONS,
]

CRUD_ACTIONS = ('create', 'edit', 'delete')


def normalize_role(role: Optional[str]) -> str:
    if not role:
        return ''
    value = str(role).strip().lower()
    return ROLE_ALIASES.get(value, value)


def is_admin_tier(role: Optional[str]) -> bool:
    return normalize_role(role) in ADMIN_TIER


# Seed defaults (scripts/seed_permissions.py). Runtime checks never fall back to these:
# a role/page without a stored row is denied.
DEFAULT_PAGE_ACCESS: Dict[str, List[str]] = {
    ROLE_ADMIN: ALL_PAGES,
    ROLE_FINANCE: [
        'ready', 'produksi', 'produksi_detail', 'gudang', 'analysis', 'stock_opname_batch',
        'esb', PAGE_USERS, PAGE_PURCHASE_ORDERS, PAGE_PETTY_CASH, PAGE_PAYMENT_TERMS, PAGE_FINANCE,
    ],
    ROLE_PIC_BRANCH: ['ready', 'produksi', 'gudang', 'stock_opname_batch', 'esb', PAGE_PURCHASE_ORDERS, PAGE_PETTY_CASH],
    ROLE_STAFF: ['ready', 'produksi', 'stock_opname_batch', 'esb', PAGE_PETTY_CASH],
}

DEFAULT_CRUD_ACCESS: Dict[str, Dict[str, tuple]] = {
    ROLE_ADMIN: {page: (True, True, True) for page in ALL_PAGES},
    ROLE_FINANCE: {
        PAGE_FINANCE: (True, True, True),
        PAGE_PAYMENT_TERMS: (True, True, False),
        PAGE_PURCHASE_ORDERS: (False, True, False),
    },
    ROLE_PIC_BRANCH: {
        PAGE_PURCHASE_ORDERS: (True, True, False),
        PAGE_PETTY_CASH: (True, True, False),
        'ready': (True, True, False),
        'produksi': (True, True, False),
    },
    ROLE_STAFF: {
        PAGE_PETTY_CASH: (True, False, False),
        'ready': (True, False, False),
        'produksi': (True, False, False),
    },
}
