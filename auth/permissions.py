"""
auth/permissions.py -- Role -> permission evaluation.

Two independent hierarchies:
  Operators (admins table):   super_admin > admin > moderator
  Participants (users table): customer, seller, child, guest

The two never mix. Every predicate takes the role's own enum type and a
permission set of the matching family; an operator role asked about a
participant permission (or the reverse) simply does not have it.

Everything here is an immutable module-level table plus pure functions -- safe
to call from any thread without locking.

Route guards do not annotate handlers with permission metadata. Each guarded
operation has an entry in ADMIN_OPERATIONS / PARTICIPANT_OPERATIONS and the
guard evaluates is_operation_allowed() for it.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum


class AdminRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MODERATOR = "moderator"


class ParticipantRole(str, Enum):
    CUSTOMER = "customer"
    SELLER = "seller"
    CHILD = "child"
    GUEST = "guest"


class AdminPermission(str, Enum):
    VIEW_DASHBOARD = "view_dashboard"
    VIEW_ANALYTICS = "view_analytics"

    VIEW_USERS = "view_users"
    CREATE_USER = "create_user"
    UPDATE_USER = "update_user"
    DELETE_USER = "delete_user"
    BLOCK_USER = "block_user"
    UNBLOCK_USER = "unblock_user"

    VIEW_PRODUCTS = "view_products"
    CREATE_PRODUCT = "create_product"
    UPDATE_PRODUCT = "update_product"
    DELETE_PRODUCT = "delete_product"
    APPROVE_PRODUCT = "approve_product"
    REJECT_PRODUCT = "reject_product"
    FEATURE_PRODUCT = "feature_product"

    VIEW_ORDERS = "view_orders"
    UPDATE_ORDER_STATUS = "update_order_status"
    CANCEL_ORDER = "cancel_order"
    REFUND_ORDER = "refund_order"

    VIEW_CATEGORIES = "view_categories"
    CREATE_CATEGORY = "create_category"
    UPDATE_CATEGORY = "update_category"
    DELETE_CATEGORY = "delete_category"

    VIEW_BRANDS = "view_brands"
    CREATE_BRAND = "create_brand"
    UPDATE_BRAND = "update_brand"
    DELETE_BRAND = "delete_brand"

    VIEW_REVIEWS = "view_reviews"
    MODERATE_REVIEWS = "moderate_reviews"
    DELETE_REVIEW = "delete_review"

    VIEW_ADMINS = "view_admins"
    CREATE_ADMIN = "create_admin"
    UPDATE_ADMIN = "update_admin"
    DELETE_ADMIN = "delete_admin"
    ASSIGN_ROLES = "assign_roles"

    VIEW_SETTINGS = "view_settings"
    UPDATE_SETTINGS = "update_settings"
    MANAGE_NOTIFICATIONS = "manage_notifications"

    VIEW_REPORTS = "view_reports"
    EXPORT_DATA = "export_data"

    VIEW_CHATS = "view_chats"
    MODERATE_CHATS = "moderate_chats"
    DELETE_CHAT_MESSAGE = "delete_chat_message"

    VIEW_PAYMENTS = "view_payments"
    PROCESS_REFUNDS = "process_refunds"
    VIEW_FINANCIAL_REPORTS = "view_financial_reports"


class ParticipantPermission(str, Enum):
    CREATE_PRODUCT = "create:product"
    READ_PRODUCT = "read:product"
    UPDATE_PRODUCT = "update:product"
    CREATE_ORDER = "create:order"
    READ_ORDER = "read:order"
    UPDATE_ORDER = "update:order"
    CANCEL_ORDER = "cancel:order"
    CREATE_REVIEW = "create:review"
    READ_REVIEW = "read:review"
    READ_USER = "read:user"
    UPDATE_USER = "update:user"
    MANAGE_CHILD = "manage:child"


_P = AdminPermission

_MODERATOR = frozenset(
    {
        _P.VIEW_DASHBOARD,
        _P.VIEW_USERS,
        _P.VIEW_PRODUCTS,
        _P.APPROVE_PRODUCT,
        _P.REJECT_PRODUCT,
        _P.VIEW_ORDERS,
        _P.UPDATE_ORDER_STATUS,
        _P.VIEW_CATEGORIES,
        _P.VIEW_BRANDS,
        _P.VIEW_REVIEWS,
        _P.MODERATE_REVIEWS,
        _P.DELETE_REVIEW,
        _P.VIEW_CHATS,
        _P.MODERATE_CHATS,
        _P.DELETE_CHAT_MESSAGE,
    }
)

_ADMIN = _MODERATOR | {
    _P.VIEW_ANALYTICS,
    _P.UPDATE_USER,
    _P.BLOCK_USER,
    _P.UNBLOCK_USER,
    _P.UPDATE_PRODUCT,
    _P.FEATURE_PRODUCT,
    _P.CANCEL_ORDER,
    _P.REFUND_ORDER,
    _P.CREATE_CATEGORY,
    _P.UPDATE_CATEGORY,
    _P.CREATE_BRAND,
    _P.UPDATE_BRAND,
    _P.VIEW_SETTINGS,
    _P.VIEW_REPORTS,
    _P.VIEW_PAYMENTS,
    _P.PROCESS_REFUNDS,
}

ADMIN_ROLE_PERMISSIONS: dict[AdminRole, frozenset[AdminPermission]] = {
    AdminRole.SUPER_ADMIN: frozenset(AdminPermission),
    AdminRole.ADMIN: frozenset(_ADMIN),
    AdminRole.MODERATOR: _MODERATOR,
}

_Q = ParticipantPermission

PARTICIPANT_ROLE_PERMISSIONS: dict[ParticipantRole, frozenset[ParticipantPermission]] = {
    ParticipantRole.CUSTOMER: frozenset(
        {
            _Q.READ_PRODUCT,
            _Q.CREATE_ORDER,
            _Q.READ_ORDER,
            _Q.UPDATE_ORDER,
            _Q.CANCEL_ORDER,
            _Q.CREATE_REVIEW,
            _Q.READ_REVIEW,
            _Q.MANAGE_CHILD,
            _Q.READ_USER,
            _Q.UPDATE_USER,
        }
    ),
    ParticipantRole.SELLER: frozenset(
        {_Q.CREATE_PRODUCT, _Q.READ_PRODUCT, _Q.UPDATE_PRODUCT, _Q.READ_ORDER, _Q.READ_REVIEW}
    ),
    ParticipantRole.CHILD: frozenset({_Q.READ_PRODUCT, _Q.READ_REVIEW}),
    ParticipantRole.GUEST: frozenset({_Q.READ_PRODUCT, _Q.READ_REVIEW}),
}

# Named composites.
MANAGE_USERS = frozenset({_P.VIEW_USERS, _P.CREATE_USER, _P.UPDATE_USER, _P.DELETE_USER, _P.BLOCK_USER, _P.UNBLOCK_USER})
MANAGE_PRODUCTS = frozenset(
    {_P.VIEW_PRODUCTS, _P.CREATE_PRODUCT, _P.UPDATE_PRODUCT, _P.DELETE_PRODUCT, _P.APPROVE_PRODUCT, _P.REJECT_PRODUCT}
)
MANAGE_ADMINS = frozenset({_P.VIEW_ADMINS, _P.CREATE_ADMIN, _P.UPDATE_ADMIN, _P.DELETE_ADMIN, _P.ASSIGN_ROLES})
MANAGE_ORDERS = frozenset({_P.VIEW_ORDERS, _P.UPDATE_ORDER_STATUS, _P.CANCEL_ORDER, _P.REFUND_ORDER})

# Operation -> required permission set. Guards look operations up here.
ADMIN_OPERATIONS: dict[str, frozenset[AdminPermission]] = {
    "admins.create": frozenset({_P.CREATE_ADMIN}),
    "admins.list": frozenset({_P.VIEW_ADMINS}),
    "admins.manage": MANAGE_ADMINS,
    "users.view": frozenset({_P.VIEW_USERS}),
    "users.manage": MANAGE_USERS,
    "products.moderate": frozenset({_P.APPROVE_PRODUCT, _P.REJECT_PRODUCT}),
    "products.manage": MANAGE_PRODUCTS,
    "orders.manage": MANAGE_ORDERS,
    "dashboard.view": frozenset({_P.VIEW_DASHBOARD}),
    "settings.update": frozenset({_P.UPDATE_SETTINGS}),
}

PARTICIPANT_OPERATIONS: dict[str, frozenset[ParticipantPermission]] = {
    "profile.view": frozenset({_Q.READ_USER}),
    "profile.update": frozenset({_Q.UPDATE_USER}),
    "orders.create": frozenset({_Q.CREATE_ORDER}),
    "products.sell": frozenset({_Q.CREATE_PRODUCT, _Q.UPDATE_PRODUCT}),
    "children.manage": frozenset({_Q.MANAGE_CHILD}),
}


def parse_admin_role(value: str) -> AdminRole | None:
    try:
        return AdminRole(value)
    except ValueError:
        return None


def parse_participant_role(value: str) -> ParticipantRole | None:
    try:
        return ParticipantRole(value)
    except ValueError:
        return None


def permissions_for(role: AdminRole | ParticipantRole | None) -> frozenset:
    if isinstance(role, AdminRole):
        return ADMIN_ROLE_PERMISSIONS[role]
    if isinstance(role, ParticipantRole):
        return PARTICIPANT_ROLE_PERMISSIONS[role]
    return frozenset()


def _same_family(role, permissions: frozenset) -> bool:
    if role is None:
        return False
    family = AdminPermission if isinstance(role, AdminRole) else ParticipantPermission
    return all(isinstance(p, family) for p in permissions)


def has_all(role: AdminRole | ParticipantRole | None, required: Iterable) -> bool:
    required = frozenset(required)
    if not _same_family(role, required):
        return False
    return required <= permissions_for(role)


def has_any(role: AdminRole | ParticipantRole | None, candidates: Iterable) -> bool:
    candidates = frozenset(candidates)
    if not candidates or not _same_family(role, candidates):
        return False
    return bool(candidates & permissions_for(role))


def can_manage_users(role: AdminRole | None) -> bool:
    return has_all(role, MANAGE_USERS)


def can_manage_products(role: AdminRole | None) -> bool:
    return has_all(role, MANAGE_PRODUCTS)


def can_manage_admins(role: AdminRole | None) -> bool:
    return has_all(role, MANAGE_ADMINS)


def is_operation_allowed(role: AdminRole | ParticipantRole | None, operation: str) -> bool:
    """Evaluate the operation table for role's own hierarchy. Unknown operations are denied."""
    table = ADMIN_OPERATIONS if isinstance(role, AdminRole) else PARTICIPANT_OPERATIONS
    required = table.get(operation)
    if required is None:
        return False
    return has_all(role, required)
