"""Tests for mailcfg.services.alias."""

from __future__ import annotations

import pytest

from mailcfg.core.address import parse_address, parse_domain
from mailcfg.core.errors import (
    ALREADY_EXISTS,
    LAST_MEMBER,
    MALFORMED,
    NOT_FOUND,
    RequestError,
)
from mailcfg.models.domain import Alias

TEAM = parse_address("team@example.org")


@pytest.fixture()
def with_team(admin):
    admin.addresses.add(parse_address("info@example.org"), "admin")
    admin.aliases.add(TEAM, Alias(addresses=("admin@example.org",)))
    return admin


class TestAdd:
    def test_add(self, admin):
        result = admin.aliases.add(TEAM, Alias(addresses=("admin@example.org",), post_public=True))
        alias = result.domains["example.org"].aliases["team"]
        assert alias.addresses == ("admin@example.org",)
        assert alias.post_public
        assert [(m.address, m.account) for m in alias.members] == [("admin@example.org", "admin")]
        membership = result.accounts["admin"].aliases[0]
        assert membership.alias_address == "team@example.org"
        assert membership.subscription_address == "admin@example.org"

    def test_duplicate(self, with_team):
        with pytest.raises(RequestError, match="alias already present") as exc_info:
            with_team.aliases.add(TEAM, Alias(addresses=("admin@example.org",)))
        assert exc_info.value.error_type == ALREADY_EXISTS

    @pytest.mark.parametrize("address", ["Admin@example.org", "dmarcreports@example.org"])
    def test_address_in_use(self, admin, address):
        with pytest.raises(RequestError) as exc_info:
            admin.aliases.add(parse_address(address), Alias(addresses=("admin@example.org",)))
        assert exc_info.value.error_type == ALREADY_EXISTS

    def test_separator(self, admin):
        with pytest.raises(RequestError) as exc_info:
            admin.aliases.add(
                parse_address("team+x@example.org"),
                Alias(addresses=("admin@example.org",)),
            )
        assert exc_info.value.error_type == MALFORMED

    def test_unknown_domain(self, admin):
        with pytest.raises(RequestError) as exc_info:
            admin.aliases.add(
                parse_address("team@example.net"),
                Alias(addresses=("admin@example.org",)),
            )
        assert exc_info.value.error_type == NOT_FOUND

    def test_needs_member(self, admin):
        with pytest.raises(RequestError) as exc_info:
            admin.aliases.add(TEAM, Alias(addresses=()))
        assert exc_info.value.error_type == LAST_MEMBER

    def test_unknown_member(self, admin):
        with pytest.raises(RequestError, match="nobody@example.org is not configured"):
            admin.aliases.add(TEAM, Alias(addresses=("nobody@example.org",)))
        assert "team" not in admin.snapshot().domains["example.org"].aliases

    def test_catchall_member(self, admin):
        admin.addresses.add(parse_domain("example.org"), "admin")
        with pytest.raises(RequestError) as exc_info:
            admin.aliases.add(TEAM, Alias(addresses=("@example.org",)))
        assert exc_info.value.error_type == NOT_FOUND

    def test_member_listed_twice(self, admin):
        with pytest.raises(RequestError) as exc_info:
            admin.aliases.add(TEAM, Alias(addresses=("admin@example.org", "ADMIN@example.org")))
        assert exc_info.value.error_type == ALREADY_EXISTS


class TestUpdateRemove:
    def test_update_flags(self, with_team):
        result = with_team.aliases.update(
            TEAM,
            post_public=True,
            list_members=True,
            allow_msg_from=False,
        )
        alias = result.domains["example.org"].aliases["team"]
        assert (alias.post_public, alias.list_members, alias.allow_msg_from) == (True, True, False)
        assert alias.addresses == ("admin@example.org",)

    def test_update_unknown(self, admin):
        with pytest.raises(RequestError, match="alias does not exist"):
            admin.aliases.update(TEAM, post_public=True, list_members=False, allow_msg_from=False)

    def test_remove(self, with_team):
        result = with_team.aliases.remove(TEAM)
        assert "team" not in result.domains["example.org"].aliases
        assert result.accounts["admin"].aliases == ()

    def test_remove_unknown(self, admin):
        with pytest.raises(RequestError) as exc_info:
            admin.aliases.remove(TEAM)
        assert exc_info.value.error_type == NOT_FOUND


class TestMembers:
    def test_add_addresses(self, with_team):
        result = with_team.aliases.add_addresses(TEAM, ["info@example.org"])
        alias = result.domains["example.org"].aliases["team"]
        assert alias.addresses == ("admin@example.org", "info@example.org")

    def test_add_existing_member(self, with_team):
        with pytest.raises(RequestError) as exc_info:
            with_team.aliases.add_addresses(TEAM, ["Admin@example.org"])
        assert exc_info.value.error_type == ALREADY_EXISTS

    def test_add_nothing(self, with_team):
        with pytest.raises(RequestError) as exc_info:
            with_team.aliases.add_addresses(TEAM, [])
        assert exc_info.value.error_type == MALFORMED

    def test_remove_addresses(self, with_team):
        with_team.aliases.add_addresses(TEAM, ["info@example.org"])
        result = with_team.aliases.remove_addresses(TEAM, ["admin@example.org"])
        alias = result.domains["example.org"].aliases["team"]
        assert alias.addresses == ("info@example.org",)
        assert result.accounts["admin"].aliases[0].subscription_address == "info@example.org"

    def test_remove_missing_named(self, with_team):
        with pytest.raises(RequestError, match="address not found: info@example.org"):
            with_team.aliases.remove_addresses(TEAM, ["info@example.org"])

    def test_remove_last(self, with_team):
        with pytest.raises(RequestError) as exc_info:
            with_team.aliases.remove_addresses(TEAM, ["admin@example.org"])
        assert exc_info.value.error_type == LAST_MEMBER

    def test_remove_nothing(self, with_team):
        with pytest.raises(RequestError, match="need at least one address"):
            with_team.aliases.remove_addresses(TEAM, [])
