"""
tests/test_tokens.py -- Token service: issuance, rotation, revocation.

Covers:
  - issue -> refresh once succeeds; replaying the superseded token is AccessDenied
  - the rotated token keeps working and rotates again
  - revoke is idempotent and ends refresh
  - access and refresh tokens are not interchangeable
  - audiences do not mix
  - expired access tokens are Unauthorized
  - two pairs minted in the same instant differ
  - stores rotate with compare-and-swap
  - parallel refreshes of one token: exactly one wins
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from jose import jwt

from auth.errors import AccessDenied, Unauthorized
from auth.models import Audience, Provider, TokenSubject, User
from auth.tokens import TokenService, hash_refresh_token, refresh_token_matches
from core.clock import utc_now

PHONE = "+998901234567"


def _participant(gateway) -> TokenSubject:
    user_id = gateway.store.create_user_with_link(
        User(phone_number=PHONE, is_verified=True), Provider.OTP_PHONE.value, PHONE
    )
    return gateway.store.load_subject(user_id, Provider.OTP_PHONE.value)


def test_refresh_rotates_and_old_token_is_rejected(gateway):
    subject = _participant(gateway)
    first = gateway.tokens.issue(subject)

    second = gateway.tokens.refresh(first.refresh_token, Audience.PARTICIPANT)
    assert second.refresh_token != first.refresh_token

    with pytest.raises(AccessDenied):
        gateway.tokens.refresh(first.refresh_token, Audience.PARTICIPANT)

    third = gateway.tokens.refresh(second.refresh_token, Audience.PARTICIPANT)
    assert third.access_token != second.access_token


def test_new_issue_supersedes_previous_session(gateway):
    subject = _participant(gateway)
    old = gateway.tokens.issue(subject)
    gateway.tokens.issue(subject)
    with pytest.raises(AccessDenied):
        gateway.tokens.refresh(old.refresh_token, Audience.PARTICIPANT)


def test_revoke_is_idempotent_and_blocks_refresh(gateway):
    subject = _participant(gateway)
    pair = gateway.tokens.issue(subject)
    gateway.tokens.revoke(subject.id, Audience.PARTICIPANT)
    gateway.tokens.revoke(subject.id, Audience.PARTICIPANT)
    assert gateway.store.get_refresh_hash(subject.id) is None
    with pytest.raises(AccessDenied):
        gateway.tokens.refresh(pair.refresh_token, Audience.PARTICIPANT)


def test_refresh_for_disabled_user_is_denied(gateway):
    subject = _participant(gateway)
    pair = gateway.tokens.issue(subject)
    gateway.store.set_active(subject.id, False)
    with pytest.raises(AccessDenied):
        gateway.tokens.refresh(pair.refresh_token, Audience.PARTICIPANT)


def test_access_token_is_not_a_refresh_token(gateway):
    pair = gateway.tokens.issue(_participant(gateway))
    with pytest.raises(Unauthorized):
        gateway.tokens.refresh(pair.access_token, Audience.PARTICIPANT)
    with pytest.raises(Unauthorized):
        gateway.tokens.verify_access(pair.refresh_token, Audience.PARTICIPANT)


def test_access_token_claims(gateway):
    pair = gateway.tokens.issue(_participant(gateway))
    principal = gateway.tokens.verify_access(pair.access_token, Audience.PARTICIPANT)
    assert principal.audience is Audience.PARTICIPANT
    assert principal.role == "customer"
    assert principal.provider == Provider.OTP_PHONE.value
    assert principal.is_verified is True

    claims = jwt.get_unverified_claims(pair.access_token)
    assert claims["typ"] == "access"
    assert claims["exp"] - claims["iat"] == gateway.settings.access_token_expire_seconds


def test_participant_token_rejected_for_operator_audience(gateway):
    pair = gateway.tokens.issue(_participant(gateway))
    with pytest.raises(Unauthorized):
        gateway.tokens.verify_access(pair.access_token, Audience.OPERATOR)
    with pytest.raises(Unauthorized):
        gateway.tokens.refresh(pair.refresh_token, Audience.OPERATOR)


def test_expired_access_token_is_unauthorized(gateway, settings):
    subject = _participant(gateway)
    past = utc_now() - timedelta(hours=1)
    minted_earlier = TokenService(settings, {Audience.PARTICIPANT: gateway.store}, clock=lambda: past)
    pair = minted_earlier.issue(subject)
    with pytest.raises(Unauthorized):
        gateway.tokens.verify_access(pair.access_token, Audience.PARTICIPANT)


def test_garbage_token_is_unauthorized(gateway):
    with pytest.raises(Unauthorized):
        gateway.tokens.verify_access("not-a-jwt", Audience.PARTICIPANT)


def test_token_signed_with_other_key_is_unauthorized(gateway, make_gateway):
    other = make_gateway(secret_key="c" * 40, refresh_secret_key="d" * 40)
    pair = other.tokens.issue(_participant(other))
    with pytest.raises(Unauthorized):
        gateway.tokens.verify_access(pair.access_token, Audience.PARTICIPANT)


def test_pairs_minted_in_same_instant_differ(gateway):
    subject = _participant(gateway)
    # The fixture clock is frozen, so both pairs share iat and exp.
    one = gateway.tokens.issue(subject)
    two = gateway.tokens.issue(subject)
    assert one.access_token != two.access_token
    assert one.refresh_token != two.refresh_token


def test_refresh_hash_uses_prehash_for_long_tokens():
    base = "x" * 100
    hashed = hash_refresh_token(base + "a", rounds=4)
    assert refresh_token_matches(base + "a", hashed)
    assert not refresh_token_matches(base + "b", hashed)
    assert not refresh_token_matches(base + "a", "not-a-bcrypt-hash")


def test_swap_refresh_hash_is_compare_and_swap(gateway):
    subject = _participant(gateway)
    gateway.store.set_refresh_hash(subject.id, "h1")
    assert gateway.store.swap_refresh_hash(subject.id, "h1", "h2") is True
    assert gateway.store.swap_refresh_hash(subject.id, "h1", "h3") is False
    assert gateway.store.get_refresh_hash(subject.id) == "h2"


def test_refresh_hash_lives_on_primary_link(gateway):
    subject = _participant(gateway)
    gateway.store.add_link(subject.id, Provider.SIGNED_WIDGET.value, "55")
    gateway.tokens.issue(subject)
    links = {link.provider: link for link in gateway.store.get_links(subject.id)}
    assert links[Provider.OTP_PHONE.value].hashed_refresh_token
    assert links[Provider.SIGNED_WIDGET.value].hashed_refresh_token is None


def test_parallel_refresh_of_one_token_succeeds_once(file_gateway):
    subject = _participant(file_gateway)
    pair = file_gateway.tokens.issue(subject)
    racers = 8
    barrier = threading.Barrier(racers)

    def attempt(_):
        barrier.wait()
        try:
            return file_gateway.tokens.refresh(pair.refresh_token, Audience.PARTICIPANT)
        except AccessDenied as exc:
            return exc

    with ThreadPoolExecutor(max_workers=racers) as pool:
        outcomes = list(pool.map(attempt, range(racers)))

    winners = [o for o in outcomes if not isinstance(o, AccessDenied)]
    assert len(winners) == 1
    assert sum(isinstance(o, AccessDenied) for o in outcomes) == racers - 1

    rotated = file_gateway.tokens.refresh(winners[0].refresh_token, Audience.PARTICIPANT)
    assert rotated.refresh_token != winners[0].refresh_token
