"""YAML codec for the dynamic configuration document.

:func:`persist` turns a snapshot into document text, :func:`parse`
turns document data back into a snapshot together with every problem
found.  For a valid snapshot ``parse(load(persist(s)))`` equals ``s``.

Document layout::

    domains:
      example.org:
        localpart_catchall_separators: ["+"]
        dkim:
          selectors:
            2026a: {private_key_file: dkim/..., hash: sha256}
          sign: [2026a]
        aliases:
          team: {addresses: [alice@example.org]}
    accounts:
      alice:
        domain: example.org
        destinations:
          alice@example.org: {}

Field names follow the model attributes; values equal to their default
are omitted.  Derived attributes (alias members, account alias
memberships) are never written and are recomputed on parse.
"""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Mapping
from dataclasses import MISSING, fields, is_dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from mailcfg.core.durations import parse_duration
from mailcfg.core.types import DKIMAlgorithm, DKIMHash, MTASTSMode
from mailcfg.models.account import (
    AccountConfig,
    AliasMembership,
    AutomaticJunkFlags,
    Destination,
    JunkFilter,
    Ruleset,
)
from mailcfg.models.domain import (
    DKIM,
    MTASTS,
    Alias,
    AliasMember,
    Canonicalization,
    DomainConfig,
    ReportingAddress,
    Selector,
)
from mailcfg.models.snapshot import ConfigSnapshot
from mailcfg.validation.consistency import check_snapshot

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _default_of(f) -> Any:  # noqa: ANN401
    if f.default is not MISSING:
        return f.default
    if f.default_factory is not MISSING:
        return f.default_factory()
    return MISSING


def _encode(value: Any) -> Any:  # noqa: ANN401
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value):
        out: dict[str, Any] = {}
        for f in fields(value):
            if not f.compare:
                continue
            v = getattr(value, f.name)
            if v == _default_of(f):
                continue
            out[f.name] = _encode(v)
        return out
    if isinstance(value, Mapping):
        return {str(k): _encode(value[k]) for k in sorted(value)}
    if isinstance(value, (tuple, list)):
        return [_encode(v) for v in value]
    return value


def encode(snapshot: ConfigSnapshot) -> dict[str, Any]:
    """Return the plain-data document for *snapshot*."""
    return {
        "domains": _encode(snapshot.domains),
        "accounts": _encode(snapshot.accounts),
    }


def persist(snapshot: ConfigSnapshot) -> str:
    """Return the YAML document text for *snapshot*."""
    return yaml.safe_dump(
        encode(snapshot),
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class _Reader:
    """Typed access to one mapping of the document, collecting errors."""

    def __init__(self, data: Any, path: str, errors: list[str]) -> None:  # noqa: ANN401
        self.path = path
        self.errors = errors
        self._seen: set[str] = set()
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            errors.append(f"{path}: expected a mapping, got {type(data).__name__}")
            data = {}
        self.data = data

    def _get(self, key: str, kind: type | tuple[type, ...], default: Any) -> Any:  # noqa: ANN401
        self._seen.add(key)
        if key not in self.data or self.data[key] is None:
            return default
        value = self.data[key]
        # bool is an int subclass; keep the two apart.
        if isinstance(value, bool) and kind is not bool:
            self.errors.append(f"{self.path}.{key}: expected {_kind_name(kind)}, got bool")
            return default
        if not isinstance(value, kind):
            self.errors.append(
                f"{self.path}.{key}: expected {_kind_name(kind)}, got {type(value).__name__}",
            )
            return default
        return value

    def str(self, key: str, default: str = "") -> str:
        return self._get(key, str, default)

    def bool(self, key: str, default: bool = False) -> bool:  # noqa: FBT001, FBT002
        return self._get(key, bool, default)

    def int(self, key: str, default: int = 0) -> int:
        return self._get(key, int, default)

    def float(self, key: str, default: float = 0.0) -> float:
        return float(self._get(key, (int, float), default))

    def str_tuple(self, key: str) -> tuple[str, ...]:
        items = self._get(key, list, [])
        result = []
        for idx, item in enumerate(items):
            if not isinstance(item, str):
                self.errors.append(f"{self.path}.{key}[{idx}]: expected string")
                continue
            result.append(item)
        return tuple(result)

    def child(self, key: str) -> _Reader | None:
        """Reader for a nested mapping, or ``None`` when absent."""
        self._seen.add(key)
        if self.data.get(key) is None:
            return None
        return _Reader(self.data[key], f"{self.path}.{key}", self.errors)

    def items(self, key: str) -> list[tuple[str, _Reader]]:
        """Readers for each entry of a nested mapping of mappings."""
        sub = self.child(key)
        if sub is None:
            return []
        sub.finish(check_unknown=False)
        return [
            (str(name), _Reader(value, f"{sub.path}.{name}", self.errors))
            for name, value in sub.data.items()
        ]

    def enum(self, key: str, enum_type: type[Enum], default: Enum) -> Any:  # noqa: ANN401
        raw = self.str(key, default.value)
        try:
            return enum_type(raw)
        except ValueError:
            self.errors.append(f"{self.path}.{key}: unknown value {raw!r}")
            return default

    def finish(self, *, check_unknown: bool = True) -> None:
        if not check_unknown:
            return
        for key in self.data:
            if key not in self._seen:
                self.errors.append(f"{self.path}: unknown field {key!r}")


def _kind_name(kind: type | tuple[type, ...]) -> str:
    if isinstance(kind, tuple):
        return " or ".join(k.__name__ for k in kind)
    return kind.__name__


def _build_selector(r: _Reader) -> Selector:
    canon = r.child("canonicalization")
    canonicalization = Canonicalization()
    if canon is not None:
        canonicalization = Canonicalization(
            header_relaxed=canon.bool("header_relaxed"),
            body_relaxed=canon.bool("body_relaxed"),
        )
        canon.finish()
    expiration = r.str("expiration", "72h")
    try:
        parse_duration(expiration)
    except ValueError as exc:
        r.errors.append(f"{r.path}.expiration: {exc}")
    sel = Selector(
        private_key_file=r.str("private_key_file"),
        algorithm=r.enum("algorithm", DKIMAlgorithm, DKIMAlgorithm.RSA2048),
        hash=r.enum("hash", DKIMHash, DKIMHash.SHA256),
        canonicalization=canonicalization,
        headers=r.str_tuple("headers"),
        dont_seal_headers=r.bool("dont_seal_headers"),
        expiration=expiration,
    )
    r.finish()
    return sel


def _build_reporting(r: _Reader | None) -> ReportingAddress | None:
    if r is None:
        return None
    rep = ReportingAddress(
        account=r.str("account"),
        localpart=r.str("localpart"),
        mailbox=r.str("mailbox"),
    )
    if not rep.account or not rep.localpart:
        r.errors.append(f"{r.path}: account and localpart are required")
    r.finish()
    return rep


def _build_mta_sts(r: _Reader | None) -> MTASTS | None:
    if r is None:
        return None
    policy = MTASTS(
        policy_id=r.str("policy_id"),
        mode=r.enum("mode", MTASTSMode, MTASTSMode.ENFORCE),
        max_age_seconds=r.int("max_age_seconds", 86400),
        mx=r.str_tuple("mx"),
    )
    r.finish()
    return policy


def _build_domain(r: _Reader) -> DomainConfig:
    dkim = DKIM()
    dkim_r = r.child("dkim")
    if dkim_r is not None:
        selectors = {name: _build_selector(sr) for name, sr in dkim_r.items("selectors")}
        dkim = DKIM(selectors=selectors, sign=dkim_r.str_tuple("sign"))
        dkim_r.finish()

    aliases = {}
    for localpart, ar in r.items("aliases"):
        aliases[localpart] = Alias(
            addresses=ar.str_tuple("addresses"),
            post_public=ar.bool("post_public"),
            list_members=ar.bool("list_members"),
            allow_msg_from=ar.bool("allow_msg_from"),
        )
        ar.finish()

    domain = DomainConfig(
        description=r.str("description"),
        client_settings_domain=r.str("client_settings_domain"),
        localpart_catchall_separators=r.str_tuple("localpart_catchall_separators"),
        localpart_case_sensitive=r.bool("localpart_case_sensitive"),
        dkim=dkim,
        dmarc=_build_reporting(r.child("dmarc")),
        tlsrpt=_build_reporting(r.child("tlsrpt")),
        mta_sts=_build_mta_sts(r.child("mta_sts")),
        aliases=aliases,
        disabled=r.bool("disabled"),
    )
    r.finish()
    return domain


def _build_ruleset(r: _Reader) -> Ruleset:
    headers: dict[str, str] = {}
    hr = r.child("headers_regexp")
    if hr is not None:
        for key, value in hr.data.items():
            if not isinstance(value, str):
                r.errors.append(f"{hr.path}.{key}: expected string")
                continue
            headers[str(key)] = value
    rs = Ruleset(
        mailbox=r.str("mailbox"),
        smtp_mail_from_regexp=r.str("smtp_mail_from_regexp"),
        verified_domain=r.str("verified_domain"),
        headers_regexp=headers,
        is_forward=r.bool("is_forward"),
        list_allow_domain=r.str("list_allow_domain"),
        accept_rejects_to_mailbox=r.str("accept_rejects_to_mailbox"),
    )
    r.finish()
    return rs


def _build_destination(r: _Reader) -> Destination:
    rulesets = []
    items = r._get("rulesets", list, [])  # noqa: SLF001
    for idx, item in enumerate(items):
        rulesets.append(_build_ruleset(_Reader(item, f"{r.path}.rulesets[{idx}]", r.errors)))
    dest = Destination(
        mailbox=r.str("mailbox"),
        full_name=r.str("full_name"),
        rulesets=tuple(rulesets),
    )
    r.finish()
    return dest


def _build_account(r: _Reader) -> AccountConfig:
    junk_filter = None
    jr = r.child("junk_filter")
    if jr is not None:
        junk_filter = JunkFilter(
            threshold=jr.float("threshold", 0.95),
            onegrams=jr.bool("onegrams", True),  # noqa: FBT003
            twograms=jr.bool("twograms"),
            threegrams=jr.bool("threegrams"),
            max_power=jr.float("max_power", 0.01),
            top_words=jr.int("top_words", 10),
            ignore_words=jr.float("ignore_words", 0.1),
            rare_words=jr.int("rare_words", 2),
        )
        jr.finish()

    flags = AutomaticJunkFlags()
    fr = r.child("automatic_junk_flags")
    if fr is not None:
        flags = AutomaticJunkFlags(
            enabled=fr.bool("enabled"),
            junk_mailbox_regexp=fr.str("junk_mailbox_regexp"),
            neutral_mailbox_regexp=fr.str("neutral_mailbox_regexp"),
            not_junk_mailbox_regexp=fr.str("not_junk_mailbox_regexp"),
        )
        fr.finish()

    account = AccountConfig(
        domain=r.str("domain"),
        destinations={addr: _build_destination(dr) for addr, dr in r.items("destinations")},
        description=r.str("description"),
        full_name=r.str("full_name"),
        from_id_login_addresses=r.str_tuple("from_id_login_addresses"),
        rejects_mailbox=r.str("rejects_mailbox"),
        junk_filter=junk_filter,
        automatic_junk_flags=flags,
        subject_pass_period_seconds=r.int("subject_pass_period_seconds"),
        no_custom_password=r.bool("no_custom_password"),
    )
    if not account.domain:
        r.errors.append(f"{r.path}: domain is required")
    r.finish()
    return account


def _link_aliases(snapshot: ConfigSnapshot) -> ConfigSnapshot:
    """Fill in alias members and the accounts' alias back-references."""
    memberships: dict[str, list[AliasMembership]] = {}
    domains = {}
    for domain_name, domain_config in snapshot.domains.items():
        aliases = {}
        for localpart, alias in domain_config.aliases.items():
            members = []
            for address in alias.addresses:
                dest = snapshot.resolve(address)
                if dest is None:
                    continue
                members.append(AliasMember(address=address, account=dest.account))
                memberships.setdefault(dest.account, []).append(
                    AliasMembership(
                        subscription_address=address,
                        alias_localpart=localpart,
                        alias_domain=domain_name,
                    ),
                )
            aliases[localpart] = replace(alias, members=tuple(members))
        domains[domain_name] = replace(domain_config, aliases=aliases)
    accounts = {
        name: replace(account, aliases=tuple(memberships.get(name, ())))
        for name, account in snapshot.accounts.items()
    }
    return ConfigSnapshot(domains=domains, accounts=accounts)


def _check_key_files(snapshot: ConfigSnapshot, config_dir: Path) -> list[str]:
    errors = []
    for domain_name, domain_config in snapshot.domains.items():
        for sel_name, sel in domain_config.dkim.selectors.items():
            if sel.private_key_file and not (config_dir / sel.private_key_file).is_file():
                errors.append(
                    f"domain {domain_name!r}: selector {sel_name!r}: private key file "
                    f"{sel.private_key_file} not found",
                )
    return errors


def parse(
    data: Any,  # noqa: ANN401
    *,
    config_dir: Path | None = None,
) -> tuple[ConfigSnapshot, list[str]]:
    """Build a snapshot from document *data*.

    Returns the snapshot and the list of problems; the snapshot is only
    usable when the list is empty.  With *config_dir*, selector key
    files must exist relative to it.
    """
    errors: list[str] = []
    root = _Reader(data, "config", errors)
    domains = {name: _build_domain(dr) for name, dr in root.items("domains")}
    accounts = {name: _build_account(ar) for name, ar in root.items("accounts")}
    root.finish()

    snapshot = ConfigSnapshot(domains=domains, accounts=accounts)
    errors.extend(check_snapshot(snapshot))
    if config_dir is not None:
        errors.extend(_check_key_files(snapshot, config_dir))
    return _link_aliases(snapshot), errors


def load(text: str, *, config_dir: Path | None = None) -> tuple[ConfigSnapshot, list[str]]:
    """Parse YAML document *text*."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        return ConfigSnapshot(), [f"parsing yaml: {exc}"]
    return parse(data, config_dir=config_dir)


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


def write_atomic(path: Path, text: str) -> None:
    """Replace *path* with *text* via a synced temporary file.

    Readers of *path* see the old or the new content, never a mix.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f"{path.name}.tmp.{os.getpid()}")
    orig_mode = path.stat().st_mode & 0o777 if path.exists() else 0o660
    try:
        with temp_path.open("w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_path, orig_mode)
        os.replace(temp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            temp_path.unlink()
        raise
    log.debug("Wrote configuration document %s", path)
