"""Tests for mailcfg.validation.consistency."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from mailcfg.backends.base import LoginCredential, MessageSummary, Suppression
from mailcfg.core.address import parse_address, parse_domain
from mailcfg.core.errors import (
    ALREADY_EXISTS,
    LAST_MEMBER,
    MALFORMED,
    NOT_FOUND,
    QUEUE_DEPENDENCY,
    REFERENCED,
    UNSUPPORTED,
    InternalError,
    RequestError,
)
from mailcfg.core.types import DKIMHash
from mailcfg.models.account import AccountConfig, Destination
from mailcfg.models.domain import DKIM, Alias, DomainConfig, ReportingAddress, Selector
from mailcfg.models.snapshot import ConfigSnapshot
from mailcfg.store.document import load, persist
from mailcfg.validation.consistency import (
    check_account_removal,
    check_address_available,
    check_address_login_credentials,
    check_alias_members_remaining,
    check_catchall_available,
    check_dkim_selector_addition,
    check_dkim_selector_removal,
    check_domain_removal,
    check_queue_for_address_removal,
    check_snapshot,
    prepare_account_removal,
    remove_alias_memberships,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _snapshot(**alice_overrides) -> ConfigSnapshot:
    """example.org with accounts alice (two addresses, catchall) and bob."""
    domain = DomainConfig(
        localpart_catchall_separators=("+",),
        dkim=DKIM(selectors={"s1": Selector(private_key_file="dkim/s1.pem")}, sign=("s1",)),
        dmarc=ReportingAddress(account="bob", localpart="dmarcreports", mailbox="DMARC"),
        aliases={"team": Alias(addresses=("alice@example.org", "bob@example.org"))},
    )
    alice = AccountConfig(
        domain="example.org",
        destinations={
            "alice@example.org": Destination(),
            "Al@example.org": Destination(),
            "@example.org": Destination(),
        },
        from_id_login_addresses=("al@example.org",),
        **alice_overrides,
    )
    bob = AccountConfig(domain="example.org", destinations={"bob@example.org": Destination()})
    snapshot = ConfigSnapshot(
        domains={"example.org": domain},
        accounts={"alice": alice, "bob": bob},
    )
    # Link alias memberships the way a parsed document has them.
    parsed, errors = load(persist(snapshot))
    assert errors == []
    return parsed


def _cred(login: str, account: str = "alice") -> LoginCredential:
    return LoginCredential(fingerprint="fp1", account=account, login_address=login)


def _msg(sender: str, account: str = "alice") -> MessageSummary:
    return MessageSummary(id=1, account=account, sender=sender)


# ---------------------------------------------------------------------------
# Domains and accounts
# ---------------------------------------------------------------------------


class TestDomainRemoval:
    def test_unknown_domain(self):
        with pytest.raises(RequestError) as exc_info:
            check_domain_removal(_snapshot(), parse_domain("example.net"), [])
        assert exc_info.value.error_type == NOT_FOUND

    def test_credential_blocks(self):
        with pytest.raises(RequestError) as exc_info:
            creds = [_cred("al@example.org")]
            check_domain_removal(_snapshot(), parse_domain("example.org"), creds)
        assert exc_info.value.error_type == REFERENCED
        assert "fp1" in exc_info.value.detail

    def test_allowed(self):
        snapshot = _snapshot()
        domain = check_domain_removal(snapshot, parse_domain("example.org"), [])
        assert domain is snapshot.domains["example.org"]


class TestAccountRemoval:
    def test_reporting_account_refused(self):
        with pytest.raises(RequestError, match="receives dmarc reports for domain example.org"):
            check_account_removal(_snapshot(), "bob")

    def test_alias_member_refused(self):
        with pytest.raises(RequestError) as exc_info:
            check_account_removal(_snapshot(), "alice")
        assert exc_info.value.error_type == REFERENCED
        assert "member of alias team@example.org" in exc_info.value.detail

    def test_unknown(self):
        with pytest.raises(RequestError) as exc_info:
            check_account_removal(_snapshot(), "carol")
        assert exc_info.value.error_type == NOT_FOUND

    def test_prepare_drains_queue(self):
        queue = MagicMock()
        queue.fail_messages.return_value = 2
        queue.cancel_webhooks.return_value = 0
        queue.list_suppressions.return_value = [
            Suppression(account="alice", base_address="x@example.net"),
        ]
        prepare_account_removal(queue, "alice")
        queue.fail_messages.assert_called_once_with("alice")
        queue.remove_suppression.assert_called_once_with("alice", "x@example.net")

    def test_prepare_failure_is_internal(self):
        queue = MagicMock()
        queue.fail_messages.side_effect = OSError("queue db locked")
        with pytest.raises(InternalError, match="queue db locked"):
            prepare_account_removal(queue, "alice")
        queue.cancel_webhooks.assert_not_called()


# ---------------------------------------------------------------------------
# Addresses
# ---------------------------------------------------------------------------


class TestAddressAvailable:
    def test_canonical_duplicate(self):
        with pytest.raises(RequestError) as exc_info:
            check_address_available(_snapshot(), parse_address("ALICE@example.org"))
        assert exc_info.value.error_type == ALREADY_EXISTS

    def test_separator_in_localpart(self):
        with pytest.raises(RequestError) as exc_info:
            check_address_available(_snapshot(), parse_address("carol+x@example.org"))
        assert exc_info.value.error_type == MALFORMED

    def test_alias_in_use(self):
        with pytest.raises(RequestError, match="in use as alias"):
            check_address_available(_snapshot(), parse_address("Team@example.org"))

    def test_reporting_address_in_use(self):
        with pytest.raises(RequestError, match="already configured"):
            check_address_available(_snapshot(), parse_address("dmarcreports@example.org"))

    def test_unknown_domain(self):
        with pytest.raises(RequestError) as exc_info:
            check_address_available(_snapshot(), parse_address("carol@example.net"))
        assert exc_info.value.error_type == NOT_FOUND

    def test_available(self):
        check_address_available(_snapshot(), parse_address("carol@example.org"))

    def test_catchall_taken(self):
        with pytest.raises(RequestError, match="catchall address already configured"):
            check_catchall_available(_snapshot(), parse_domain("example.org"))


class TestAddressLoginCredentials:
    def test_exact_login_refused(self):
        with pytest.raises(RequestError) as exc_info:
            creds = [_cred("al@example.org")]
            check_address_login_credentials(_snapshot(), "Al@example.org", creds)
        assert exc_info.value.error_type == REFERENCED

    def test_other_login_allowed(self):
        check_address_login_credentials(_snapshot(), "Al@example.org", [_cred("alice@example.org")])

    def test_catchall_refuses_covered_login(self):
        creds = [_cred("carol@example.org")]
        with pytest.raises(RequestError):
            check_address_login_credentials(_snapshot(), "@example.org", creds)

    def test_catchall_allows_explicit_login(self):
        check_address_login_credentials(_snapshot(), "@example.org", [_cred("alice@example.org")])

    def test_unresolvable_login(self):
        with pytest.raises(RequestError) as exc_info:
            check_address_login_credentials(_snapshot(), "@example.org", [_cred("nope")])
        assert exc_info.value.error_type == MALFORMED


class TestQueueDependency:
    def test_catchall_removal_blocked_by_implicit_sender(self):
        snapshot = _snapshot()
        dest = snapshot.resolve("@example.org")
        with pytest.raises(RequestError) as exc_info:
            check_queue_for_address_removal(
                snapshot,
                "@example.org",
                dest,
                [_msg("carol@example.org")],
            )
        assert exc_info.value.error_type == QUEUE_DEPENDENCY

    def test_catchall_removal_allowed_for_explicit_sender(self):
        snapshot = _snapshot()
        dest = snapshot.resolve("@example.org")
        check_queue_for_address_removal(
            snapshot,
            "@example.org",
            dest,
            [_msg("alice+tag@example.org")],
        )

    def test_address_removal_covered_by_catchall(self):
        snapshot = _snapshot()
        dest = snapshot.resolve("al@example.org")
        check_queue_for_address_removal(snapshot, "Al@example.org", dest, [_msg("al@example.org")])

    def test_address_removal_without_catchall_blocked(self):
        snapshot = _snapshot()
        dest = snapshot.resolve("bob@example.org")
        with pytest.raises(RequestError, match="no catchall address is configured"):
            check_queue_for_address_removal(
                snapshot,
                "bob@example.org",
                dest,
                [_msg("Bob+x@example.org", account="bob")],
            )

    def test_unknown_sender_domain(self):
        snapshot = _snapshot()
        dest = snapshot.resolve("bob@example.org")
        with pytest.raises(RequestError, match="unknown sender domain"):
            check_queue_for_address_removal(
                snapshot,
                "bob@example.org",
                dest,
                [_msg("bob@example.net", account="bob")],
            )


# ---------------------------------------------------------------------------
# Aliases
# ---------------------------------------------------------------------------


class TestAliasMemberships:
    def test_removes_canonical_member(self):
        snapshot = _snapshot()
        alice = snapshot.accounts["alice"]
        domains = remove_alias_memberships(snapshot, alice, "ALICE@example.org")
        assert domains["example.org"].aliases["team"].addresses == ("bob@example.org",)
        assert snapshot.domains["example.org"].aliases["team"].addresses == (
            "alice@example.org",
            "bob@example.org",
        )

    def test_not_member(self):
        snapshot = _snapshot()
        domains = remove_alias_memberships(snapshot, snapshot.accounts["alice"], "al@example.org")
        assert domains is snapshot.domains

    def test_last_member(self):
        with pytest.raises(RequestError) as exc_info:
            check_alias_members_remaining("team@example.org", ())
        assert exc_info.value.error_type == LAST_MEMBER


# ---------------------------------------------------------------------------
# DKIM
# ---------------------------------------------------------------------------


class TestDKIM:
    def test_addition(self):
        snapshot = _snapshot()
        domain, hash_alg = check_dkim_selector_addition(
            snapshot,
            parse_domain("example.org"),
            parse_domain("s2"),
            "sha1",
        )
        assert domain is snapshot.domains["example.org"]
        assert hash_alg is DKIMHash.SHA1

    def test_unknown_hash(self):
        with pytest.raises(RequestError) as exc_info:
            check_dkim_selector_addition(
                _snapshot(),
                parse_domain("example.org"),
                parse_domain("s2"),
                "md5",
            )
        assert exc_info.value.error_type == UNSUPPORTED

    def test_duplicate_selector(self):
        with pytest.raises(RequestError) as exc_info:
            check_dkim_selector_addition(
                _snapshot(),
                parse_domain("example.org"),
                parse_domain("s1"),
                "sha256",
            )
        assert exc_info.value.error_type == ALREADY_EXISTS

    def test_removal_unknown_selector(self):
        with pytest.raises(RequestError, match="selector does not exist"):
            check_dkim_selector_removal(
                _snapshot(),
                parse_domain("example.org"),
                parse_domain("s9"),
            )


# ---------------------------------------------------------------------------
# Whole snapshot
# ---------------------------------------------------------------------------


class TestCheckSnapshot:
    def test_valid(self):
        assert check_snapshot(_snapshot()) == []

    def test_duplicate_destination_across_accounts(self):
        snapshot = _snapshot()
        bob = snapshot.accounts["bob"]
        dup = snapshot.with_account(
            "bob",
            AccountConfig(
                domain=bob.domain,
                destinations={**bob.destinations, "alice+x@example.org": Destination()},
            ),
        )
        errors = check_snapshot(dup)
        assert any("canonicalizes to alice@example.org" in e for e in errors)
        assert any("catchall separator" in e for e in errors)

    def test_login_address_of_other_account(self):
        snapshot = _snapshot()
        bob = snapshot.accounts["bob"]
        bad = snapshot.with_account(
            "bob",
            AccountConfig(
                domain=bob.domain,
                destinations=bob.destinations,
                from_id_login_addresses=("alice@example.org",),
            ),
        )
        assert any("login address 'alice@example.org'" in e for e in check_snapshot(bad))

    def test_reporting_account_missing(self):
        snapshot = _snapshot().without_account("bob")
        errors = check_snapshot(snapshot)
        assert any("dmarc reporting account 'bob' does not exist" in e for e in errors)
        assert any("member 'bob@example.org'" in e for e in errors)

    def test_alias_collides_with_destination(self):
        snapshot = _snapshot()
        domain = snapshot.domains["example.org"]
        aliases = {**domain.aliases, "al": Alias(addresses=("bob@example.org",))}
        bad = snapshot.with_domain(
            "example.org",
            DomainConfig(
                localpart_catchall_separators=domain.localpart_catchall_separators,
                dkim=domain.dkim,
                dmarc=domain.dmarc,
                aliases=aliases,
            ),
        )
        assert any("collides with account destination" in e for e in check_snapshot(bad))

    def test_empty_alias(self):
        snapshot = _snapshot()
        domain = snapshot.domains["example.org"]
        bad = snapshot.with_domain(
            "example.org",
            DomainConfig(
                localpart_catchall_separators=domain.localpart_catchall_separators,
                dkim=domain.dkim,
                dmarc=domain.dmarc,
                aliases={**domain.aliases, "empty": Alias(addresses=())},
            ),
        )
        assert any("must have at least one member" in e for e in check_snapshot(bad))
