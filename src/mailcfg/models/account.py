"""Account configuration entities."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Ruleset:
    """Delivery rule selecting a mailbox for matching incoming messages."""

    mailbox: str
    smtp_mail_from_regexp: str = ""
    verified_domain: str = ""
    headers_regexp: Mapping[str, str] = field(default_factory=dict)
    is_forward: bool = False
    list_allow_domain: str = ""
    accept_rejects_to_mailbox: str = ""


@dataclass(frozen=True)
class Destination:
    mailbox: str = ""
    full_name: str = ""
    rulesets: tuple[Ruleset, ...] = ()


@dataclass(frozen=True)
class JunkFilter:
    threshold: float = 0.95
    onegrams: bool = True
    twograms: bool = False
    threegrams: bool = False
    max_power: float = 0.01
    top_words: int = 10
    ignore_words: float = 0.1
    rare_words: int = 2


@dataclass(frozen=True)
class AutomaticJunkFlags:
    enabled: bool = False
    junk_mailbox_regexp: str = ""
    neutral_mailbox_regexp: str = ""
    not_junk_mailbox_regexp: str = ""


@dataclass(frozen=True)
class AliasMembership:
    """Back-reference from an account to an alias it receives mail for.

    ``subscription_address`` is the account address listed as member.
    """

    subscription_address: str
    alias_localpart: str
    alias_domain: str

    @property
    def alias_address(self) -> str:
        return f"{self.alias_localpart}@{self.alias_domain}"


@dataclass(frozen=True)
class AccountConfig:
    """Configuration of one account.

    ``destinations`` keys are full addresses, or ``@domain`` for a
    catchall.  ``aliases`` is derived when the document is parsed and is
    not part of equality.
    """

    domain: str
    destinations: Mapping[str, Destination] = field(default_factory=dict)
    description: str = ""
    full_name: str = ""
    from_id_login_addresses: tuple[str, ...] = ()
    rejects_mailbox: str = ""
    junk_filter: JunkFilter | None = None
    automatic_junk_flags: AutomaticJunkFlags = field(default_factory=AutomaticJunkFlags)
    subject_pass_period_seconds: int = 0
    no_custom_password: bool = False
    aliases: tuple[AliasMembership, ...] = field(default=(), compare=False)
