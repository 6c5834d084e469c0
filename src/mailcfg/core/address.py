"""Parsed domain names and email addresses.

Operation handlers only accept these parsed values, never raw strings,
so all syntax checking happens once at the edge.  Domains are kept in
both A-label (ASCII/punycode) and U-label (unicode) form; configuration
keys use :attr:`Domain.name`, which prefers the unicode form.
"""

from __future__ import annotations

import encodings.idna  # noqa: F401 (registers the IDNA codec)
import re
from dataclasses import dataclass

from mailcfg.core.errors import MALFORMED, RequestError

_MAX_LABEL_LENGTH = 63
_MAX_DOMAIN_LENGTH = 253
_MAX_LOCALPART_LENGTH = 64

_LABEL_RE = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")
_LOCALPART_BAD_RE = re.compile(r"[\s@\x00-\x1f\x7f]")


@dataclass(frozen=True)
class Domain:
    """A validated, lower-cased domain name."""

    ascii: str
    unicode: str = ""

    @property
    def name(self) -> str:
        """Unicode form when the name has IDNA labels, else the ASCII form."""
        return self.unicode or self.ascii

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Address:
    """An email address: local-part at a parsed domain."""

    localpart: str
    domain: Domain

    def __str__(self) -> str:
        return f"{self.localpart}@{self.domain.name}"


def _encode_label(label: str, value: str) -> str:
    try:
        label.encode("ascii")
        return label
    except UnicodeEncodeError:
        pass
    try:
        return label.encode("idna").decode("ascii")
    except UnicodeError as err:
        raise RequestError(
            MALFORMED,
            f"invalid internationalized domain label {label!r} in {value!r}",
        ) from err


def parse_domain(value: str) -> Domain:
    """Parse and normalise *value* into a :class:`Domain`.

    Non-ASCII labels are encoded via IDNA; existing ``xn--`` labels are
    decoded to produce the unicode form.

    Raises
    ------
    RequestError
        If the name is empty, too long or has an invalid label.

    """
    if not value or value != value.strip():
        raise RequestError(MALFORMED, f"invalid domain name {value!r}")
    lowered = value.lower()
    if lowered.endswith("."):
        raise RequestError(MALFORMED, f"domain name {value!r} must not end with a dot")

    ascii_labels: list[str] = []
    for label in lowered.split("."):
        encoded = _encode_label(label, value)
        if not encoded or len(encoded) > _MAX_LABEL_LENGTH or not _LABEL_RE.match(encoded):
            raise RequestError(MALFORMED, f"invalid label {label!r} in domain name {value!r}")
        ascii_labels.append(encoded)
    ascii_name = ".".join(ascii_labels)
    if len(ascii_name) > _MAX_DOMAIN_LENGTH:
        raise RequestError(MALFORMED, f"domain name {value!r} is too long")

    unicode_name = ""
    if any(label.startswith("xn--") for label in ascii_labels):
        try:
            unicode_name = ".".join(
                label.encode("ascii").decode("idna") for label in ascii_labels
            )
        except UnicodeError as err:
            raise RequestError(MALFORMED, f"invalid punycode in domain name {value!r}") from err
    return Domain(ascii=ascii_name, unicode=unicode_name)


def parse_localpart(value: str) -> str:
    """Validate a local-part; returned unchanged (case is preserved)."""
    if not value:
        raise RequestError(MALFORMED, "empty localpart")
    if len(value) > _MAX_LOCALPART_LENGTH:
        raise RequestError(MALFORMED, f"localpart {value!r} is too long")
    if _LOCALPART_BAD_RE.search(value):
        raise RequestError(MALFORMED, f"localpart {value!r} contains invalid characters")
    if value.startswith(".") or value.endswith(".") or ".." in value:
        raise RequestError(MALFORMED, f"localpart {value!r} has misplaced dots")
    return value


def parse_address(value: str) -> Address:
    """Parse ``localpart@domain``."""
    localpart, sep, domain = value.rpartition("@")
    if not sep:
        raise RequestError(MALFORMED, f"missing @ in email address {value!r}")
    return Address(localpart=parse_localpart(localpart), domain=parse_domain(domain))


def parse_selector(value: str) -> Domain:
    """Parse a DKIM selector name (one or more DNS labels)."""
    return parse_domain(value)


def is_catchall(address: str) -> bool:
    """Whether *address* is a catchall destination of the form ``@domain``."""
    return address.startswith("@")


def parse_destination(value: str) -> Address | Domain:
    """Parse an account destination: an address, or ``@domain`` for a catchall."""
    if is_catchall(value):
        return parse_domain(value[1:])
    return parse_address(value)


def destination_key(destination: Address | Domain) -> str:
    """Return the destination key for a parsed destination."""
    if isinstance(destination, Domain):
        return "@" + destination.name
    return str(destination)
