"""
tests/test_permissions.py -- Role -> permission evaluation.

Covers:
  - the operator hierarchy is strictly nested (moderator < admin < super_admin)
  - operator and participant hierarchies never satisfy each other
  - composite checks (can_manage_*)
  - unknown operations and missing roles are denied
"""

from __future__ import annotations

import pytest

from auth.permissions import (
    ADMIN_OPERATIONS,
    ADMIN_ROLE_PERMISSIONS,
    AdminPermission,
    AdminRole,
    ParticipantPermission,
    ParticipantRole,
    can_manage_admins,
    can_manage_products,
    can_manage_users,
    has_all,
    has_any,
    is_operation_allowed,
    parse_admin_role,
    parse_participant_role,
    permissions_for,
)


def test_operator_hierarchy_is_nested():
    moderator = ADMIN_ROLE_PERMISSIONS[AdminRole.MODERATOR]
    admin = ADMIN_ROLE_PERMISSIONS[AdminRole.ADMIN]
    super_admin = ADMIN_ROLE_PERMISSIONS[AdminRole.SUPER_ADMIN]
    assert moderator < admin < super_admin
    assert super_admin == frozenset(AdminPermission)


def test_hierarchies_never_mix():
    assert not has_all(AdminRole.SUPER_ADMIN, {ParticipantPermission.READ_PRODUCT})
    assert not has_any(AdminRole.SUPER_ADMIN, {ParticipantPermission.READ_PRODUCT})
    assert not has_all(ParticipantRole.SELLER, {AdminPermission.VIEW_PRODUCTS})
    assert not is_operation_allowed(ParticipantRole.CUSTOMER, "dashboard.view")
    assert not is_operation_allowed(AdminRole.SUPER_ADMIN, "orders.create")


def test_mixed_requirement_set_is_denied():
    mixed = {AdminPermission.VIEW_USERS, ParticipantPermission.READ_USER}
    assert not has_all(AdminRole.SUPER_ADMIN, mixed)
    assert not has_any(ParticipantRole.CUSTOMER, mixed)


@pytest.mark.parametrize(
    "role, users, products, admins",
    [
        (AdminRole.SUPER_ADMIN, True, True, True),
        (AdminRole.ADMIN, False, False, False),
        (AdminRole.MODERATOR, False, False, False),
        (None, False, False, False),
    ],
)
def test_composites(role, users, products, admins):
    assert can_manage_users(role) is users
    assert can_manage_products(role) is products
    assert can_manage_admins(role) is admins


def test_admin_operations():
    assert is_operation_allowed(AdminRole.MODERATOR, "products.moderate")
    assert not is_operation_allowed(AdminRole.MODERATOR, "admins.create")
    assert not is_operation_allowed(AdminRole.ADMIN, "admins.create")
    assert is_operation_allowed(AdminRole.SUPER_ADMIN, "admins.create")
    assert all(is_operation_allowed(AdminRole.SUPER_ADMIN, op) for op in ADMIN_OPERATIONS)


def test_participant_operations():
    assert is_operation_allowed(ParticipantRole.SELLER, "products.sell")
    assert not is_operation_allowed(ParticipantRole.CUSTOMER, "products.sell")
    assert is_operation_allowed(ParticipantRole.CUSTOMER, "children.manage")
    assert not is_operation_allowed(ParticipantRole.CHILD, "orders.create")


def test_unknown_operation_is_denied():
    assert not is_operation_allowed(AdminRole.SUPER_ADMIN, "nuclear.launch")


def test_missing_role_has_nothing():
    assert permissions_for(None) == frozenset()
    assert not has_any(None, {AdminPermission.VIEW_DASHBOARD})
    assert not is_operation_allowed(None, "profile.view")


def test_has_any_with_empty_candidates_is_false():
    assert not has_any(AdminRole.SUPER_ADMIN, set())


def test_role_parsing():
    assert parse_admin_role("moderator") is AdminRole.MODERATOR
    assert parse_admin_role("customer") is None
    assert parse_participant_role("seller") is ParticipantRole.SELLER
    assert parse_participant_role("super_admin") is None
