"""Tests for mailcfg.core.address -- parsed domains and addresses."""

from __future__ import annotations

import pytest

from mailcfg.core.address import (
    Address,
    Domain,
    destination_key,
    is_catchall,
    parse_address,
    parse_destination,
    parse_domain,
    parse_localpart,
)
from mailcfg.core.errors import MALFORMED, RequestError


class TestParseDomain:
    def test_lowercases(self):
        d = parse_domain("Example.ORG")
        assert d.ascii == "example.org"
        assert d.unicode == ""
        assert d.name == "example.org"

    def test_unicode_name_keeps_both_forms(self):
        d = parse_domain("xn--bcher-kva.example")
        assert d.ascii == "xn--bcher-kva.example"
        assert d.unicode == "bücher.example"
        assert d.name == "bücher.example"

    def test_unicode_input_encoded(self):
        d = parse_domain("bücher.example")
        assert d.ascii == "xn--bcher-kva.example"

    @pytest.mark.parametrize(
        "value",
        ["", " example.org", "example.org.", "exa mple.org", "-bad.org", "a..b"],
    )
    def test_rejects_invalid(self, value):
        with pytest.raises(RequestError) as exc_info:
            parse_domain(value)
        assert exc_info.value.error_type == MALFORMED

    def test_rejects_long_label(self):
        with pytest.raises(RequestError):
            parse_domain("a" * 64 + ".org")

    def test_str_is_name(self):
        assert str(parse_domain("example.org")) == "example.org"


class TestParseAddress:
    def test_splits_at_last_at(self):
        a = parse_address("Alice@Example.org")
        assert a == Address(localpart="Alice", domain=Domain(ascii="example.org"))
        assert str(a) == "Alice@example.org"

    def test_missing_at(self):
        with pytest.raises(RequestError, match="missing @"):
            parse_address("alice")

    @pytest.mark.parametrize("value", ["", "a b", ".alice", "alice.", "a..b", "a@b"])
    def test_localpart_rejected(self, value):
        with pytest.raises(RequestError):
            parse_localpart(value)

    def test_localpart_preserved(self):
        assert parse_localpart("Alice+tag") == "Alice+tag"


class TestDestinations:
    def test_catchall_parses_to_domain(self):
        dest = parse_destination("@Example.org")
        assert isinstance(dest, Domain)
        assert destination_key(dest) == "@example.org"

    def test_address_destination(self):
        dest = parse_destination("bob@example.org")
        assert isinstance(dest, Address)
        assert destination_key(dest) == "bob@example.org"

    def test_is_catchall(self):
        assert is_catchall("@example.org")
        assert not is_catchall("bob@example.org")
