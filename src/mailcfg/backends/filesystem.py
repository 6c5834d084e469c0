"""Account data and login credentials stored below the data directory.

Layout::

    <data_dir>/accounts/<name>/             account data
    <data_dir>/accounts/<name>/sessions.yaml
    <data_dir>/accounts/<name>/removal-pending
    <data_dir>/login-credentials.yaml

An account marked for removal keeps its directory until the mail server
has closed it and deleted the data; a new account with the same name
cannot be added before that.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import asdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import yaml

from mailcfg.backends.base import LoginCredential
from mailcfg.services.account import validate_account_name
from mailcfg.store.document import write_atomic

if TYPE_CHECKING:
    from pathlib import Path

log = logging.getLogger(__name__)

ACCOUNTS_DIR = "accounts"
CREDENTIALS_FILE = "login-credentials.yaml"
SESSIONS_FILE = "sessions.yaml"
REMOVAL_MARKER = "removal-pending"


class FileAccountHandle:
    """An opened account directory."""

    def __init__(self, name: str, path: Path) -> None:
        self.name = name
        self.path = path

    def clear_sessions(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            (self.path / SESSIONS_FILE).unlink()

    def mark_for_removal(self) -> None:
        marker = self.path / REMOVAL_MARKER
        marker.write_text(datetime.now(UTC).isoformat(timespec="seconds") + "\n", encoding="utf-8")
        log.debug("Wrote removal marker %s", marker)

    def close(self) -> None:
        pass

    @property
    def removal_pending(self) -> bool:
        return (self.path / REMOVAL_MARKER).exists()


class FileAccountStore:
    """:class:`~mailcfg.backends.base.CredentialStore` over a data directory.

    Parameters
    ----------
    data_dir:
        Root of the mail server's data directory.

    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir

    @property
    def credentials_path(self) -> Path:
        return self.data_dir / CREDENTIALS_FILE

    def account_path(self, name: str) -> Path:
        return self.data_dir / ACCOUNTS_DIR / validate_account_name(name)

    # -- credentials ---------------------------------------------------------

    def _read_credentials(self) -> list[LoginCredential]:
        try:
            text = self.credentials_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        data = yaml.safe_load(text) or []
        if not isinstance(data, list):
            msg = f"{self.credentials_path}: expected a list of credentials"
            raise ValueError(msg)
        return [
            LoginCredential(
                fingerprint=str(item["fingerprint"]),
                account=str(item["account"]),
                login_address=str(item["login_address"]),
                name=str(item.get("name", "")),
            )
            for item in data
        ]

    def list_login_credentials(self, account: str | None = None) -> list[LoginCredential]:
        return [c for c in self._read_credentials() if account is None or c.account == account]

    def add_login_credential(self, credential: LoginCredential) -> None:
        creds = self._read_credentials()
        if any(c.fingerprint == credential.fingerprint for c in creds):
            msg = f"credential {credential.fingerprint!r} already stored"
            raise ValueError(msg)
        creds.append(credential)
        self._write_credentials(creds)

    def remove_login_credential(self, fingerprint: str) -> bool:
        creds = self._read_credentials()
        kept = [c for c in creds if c.fingerprint != fingerprint]
        if len(kept) == len(creds):
            return False
        self._write_credentials(kept)
        return True

    def _write_credentials(self, creds: list[LoginCredential]) -> None:
        text = yaml.safe_dump([asdict(c) for c in creds], sort_keys=False)
        write_atomic(self.credentials_path, text)

    # -- accounts ------------------------------------------------------------

    def open_account(self, name: str) -> FileAccountHandle:
        path = self.account_path(name)
        path.mkdir(parents=True, exist_ok=True)
        return FileAccountHandle(name, path)

    def account_dir_exists(self, name: str) -> bool:
        return self.account_path(name).is_dir()
