"""
tests/test_resolver.py -- Identity resolution and account linking.

Covers:
  - an existing (provider, provider_id) link wins
  - a contact match (email or phone) attaches a non-primary link to the existing user
  - no match creates a user with one primary link
  - a widget login whose synthetic email matches an existing user links instead of duplicating
  - a second identity of the same provider cannot enter an account through its contact
"""

from __future__ import annotations

import pytest

from auth.errors import IdentityConflict
from auth.models import Provider
from auth.widget import sign_fields

PHONE = "+998901234567"


def test_existing_link_resolves_same_user(gateway):
    first = gateway.resolver.resolve(Provider.OTP_PHONE.value, provider_id=PHONE, phone_number=PHONE)
    second = gateway.resolver.resolve(Provider.OTP_PHONE.value, provider_id=PHONE, phone_number=PHONE)
    assert first.created is True
    assert second.created is False
    assert second.user.id == first.user.id


def test_new_identity_creates_user_with_primary_link(gateway):
    result = gateway.resolver.resolve(
        Provider.OAUTH_PROFILE.value,
        provider_id="google-1",
        email="new@example.com",
        first_name="New",
        verified=True,
    )
    links = gateway.store.get_links(result.user.id)
    assert result.created is True
    assert result.user.email == "new@example.com"
    assert result.user.is_verified is True
    assert [(link.provider, link.is_primary) for link in links] == [(Provider.OAUTH_PROFILE.value, True)]


def test_contact_match_links_new_provider(gateway):
    original = gateway.resolver.resolve(Provider.OAUTH_PROFILE.value, provider_id="google-1", email="a@example.com")
    linked = gateway.resolver.resolve(Provider.SIGNED_WIDGET.value, provider_id="777", email="a@example.com")

    assert linked.user.id == original.user.id
    assert linked.linked is True
    assert linked.created is False
    links = {link.provider: link for link in gateway.store.get_links(original.user.id)}
    assert set(links) == {Provider.OAUTH_PROFILE.value, Provider.SIGNED_WIDGET.value}
    assert links[Provider.OAUTH_PROFILE.value].is_primary is True
    assert links[Provider.SIGNED_WIDGET.value].is_primary is False
    assert gateway.store.count_users() == 1


def test_linked_identity_resolves_by_link_afterwards(gateway):
    original = gateway.resolver.resolve(Provider.OAUTH_PROFILE.value, provider_id="google-1", email="a@example.com")
    gateway.resolver.resolve(Provider.SIGNED_WIDGET.value, provider_id="777", email="a@example.com")
    again = gateway.resolver.resolve(Provider.SIGNED_WIDGET.value, provider_id="777")
    assert again.user.id == original.user.id
    assert again.linked is False


def test_no_contact_and_no_link_creates_separate_users(gateway):
    one = gateway.resolver.resolve(Provider.SIGNED_WIDGET.value, provider_id="1")
    two = gateway.resolver.resolve(Provider.SIGNED_WIDGET.value, provider_id="2")
    assert one.user.id != two.user.id
    assert gateway.store.count_users() == 2


def test_widget_login_links_to_user_with_matching_email(gateway, clock):
    existing = gateway.resolver.resolve(
        Provider.OAUTH_PROFILE.value, provider_id="google-9", email="alice@telegram"
    )
    fields = {
        "id": 9001,
        "first_name": "Alice",
        "username": "alice",
        "auth_date": int(clock().timestamp()),
    }
    fields["hash"] = sign_fields(fields, gateway.settings.widget_bot_token)

    result = gateway.widget_login("test", fields)

    assert result.user.id == existing.user.id
    assert result.created is False
    assert gateway.store.count_users() == 1
    assert sorted(gateway.linked_providers(existing.user.id)) == [
        Provider.OAUTH_PROFILE.value,
        Provider.SIGNED_WIDGET.value,
    ]


def test_second_identity_of_same_provider_is_refused(gateway):
    owner = gateway.resolver.resolve(Provider.SIGNED_WIDGET.value, provider_id="111", email="alice@telegram")

    with pytest.raises(IdentityConflict):
        gateway.resolver.resolve(Provider.SIGNED_WIDGET.value, provider_id="222", email="alice@telegram")

    links = [(link.provider, link.provider_id) for link in gateway.store.get_links(owner.user.id)]
    assert links == [(Provider.SIGNED_WIDGET.value, "111")]
    assert gateway.store.get_by_link(Provider.SIGNED_WIDGET.value, "222") is None


def test_recycled_widget_username_cannot_take_over_account(client, gateway, clock):
    def signed(user_id: int) -> dict:
        fields = {"id": user_id, "first_name": "Alice", "username": "alice", "auth_date": int(clock().timestamp())}
        fields["hash"] = sign_fields(fields, gateway.settings.widget_bot_token)
        return fields

    first = client.post("/api/v1/auth/widget/login", json=signed(111))
    assert first.status_code == 200

    second = client.post("/api/v1/auth/widget/login", json=signed(222))
    assert second.status_code == 401
    assert second.json()["error"]["code"] == "invalid_credentials"
    assert gateway.store.count_users() == 1
