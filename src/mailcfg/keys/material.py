"""DKIM private key generation and key file lifecycle.

Key files live below the configuration directory::

    dkim/<selector>._domainkey.<domain>.<YYYYmmddTHHMMSS>.<tag>.privatekey.pem
    dkim/old/...    # retired keys, never deleted

Files are created before the configuration referencing them is
published.  A file no longer referenced by any selector of any domain
is moved to ``old/`` next to it.
"""

from __future__ import annotations

import base64
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa

from mailcfg.core.errors import STEP_IO, InternalError, KeyFileExistsError, KeyGenerationError
from mailcfg.core.types import DKIMAlgorithm

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

    from mailcfg.core.address import Domain
    from mailcfg.models.domain import Selector

log = logging.getLogger(__name__)

KEY_DIR = "dkim"
RETIRED_DIR = "old"

_PEM_TYPE = "PRIVATE KEY"
_PEM_LINE_LENGTH = 64
_RSA_KEY_SIZE = 2048
_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S"


# ---------------------------------------------------------------------------
# PEM with headers
# ---------------------------------------------------------------------------


def encode_pem(der: bytes, headers: Mapping[str, str]) -> bytes:
    """Encode *der* as a ``PRIVATE KEY`` PEM block with RFC 1421 headers."""
    body = base64.b64encode(der).decode("ascii")
    lines = [f"-----BEGIN {_PEM_TYPE}-----"]
    lines.extend(f"{k}: {v}" for k, v in headers.items())
    if headers:
        lines.append("")
    lines.extend(body[i : i + _PEM_LINE_LENGTH] for i in range(0, len(body), _PEM_LINE_LENGTH))
    lines.append(f"-----END {_PEM_TYPE}-----")
    return ("\n".join(lines) + "\n").encode("ascii")


def decode_pem(data: bytes) -> tuple[bytes, dict[str, str]]:
    """Return the DER payload and headers of the first PEM block in *data*."""
    text = data.decode("ascii")
    begin = f"-----BEGIN {_PEM_TYPE}-----"
    end = f"-----END {_PEM_TYPE}-----"
    try:
        start = text.index(begin) + len(begin)
        stop = text.index(end, start)
    except ValueError:
        msg = "no PRIVATE KEY block found"
        raise ValueError(msg) from None

    headers: dict[str, str] = {}
    body: list[str] = []
    for line in text[start:stop].strip().splitlines():
        if not body and ": " in line:
            key, value = line.split(": ", 1)
            headers[key] = value
        elif line.strip():
            body.append(line.strip())
    return base64.b64decode("".join(body)), headers


# ---------------------------------------------------------------------------
# Rollback of created files
# ---------------------------------------------------------------------------


class KeyFileRollback:
    """Remembers the key files created during one transaction."""

    def __init__(self) -> None:
        self.paths: list[Path] = []

    def add(self, path: Path) -> None:
        self.paths.append(path)

    def release(self, *, success: bool) -> None:
        """Remove the recorded files, newest first, unless *success*."""
        paths, self.paths = self.paths, []
        if success:
            return
        for path in reversed(paths):
            try:
                path.unlink()
            except OSError:
                log.exception("Failed to remove key file %s during rollback", path)
            else:
                log.info("Removed key file %s after failed transaction", path)


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class KeyMaterialManager:
    """Create, load and retire DKIM key files below *config_dir*."""

    def __init__(self, config_dir: Path) -> None:
        self.config_dir = config_dir

    def generate_key(
        self,
        algorithm: DKIMAlgorithm,
        selector: Domain | None = None,
        domain: Domain | None = None,
    ) -> bytes:
        """Generate a private key and return it as PEM.

        The PEM carries a ``Note`` header naming the algorithm, the
        ``<selector>._domainkey.<domain>`` record when both are given,
        and the generation time.

        Raises
        ------
        KeyGenerationError
            If the key cannot be generated or serialised.

        """
        try:
            key: PrivateKeyTypes
            if algorithm is DKIMAlgorithm.ED25519:
                key = ed25519.Ed25519PrivateKey.generate()
            else:
                key = rsa.generate_private_key(
                    public_exponent=65537,
                    key_size=_RSA_KEY_SIZE,
                )
            der = key.private_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        except Exception as exc:
            msg = f"generating {algorithm.note_name} key: {exc}"
            raise KeyGenerationError(msg) from exc

        note = f"{algorithm.note_name} dkim private key"
        if selector is not None and domain is not None:
            note += f" for {selector.ascii}._domainkey.{domain.ascii}"
        now = datetime.now(UTC).isoformat(timespec="seconds")
        note += f", generated by mailcfg on {now}"
        return encode_pem(der, {"Note": note})

    @staticmethod
    def key_path(
        selector: Domain,
        domain: Domain,
        algorithm: DKIMAlgorithm,
        now: datetime,
    ) -> str:
        """Return the relative file name for a new key of *selector*."""
        record = f"{selector.ascii}._domainkey.{domain.ascii}"
        name = f"{record}.{now.strftime(_TIMESTAMP_FORMAT)}.{algorithm.value}.privatekey.pem"
        return f"{KEY_DIR}/{name}"

    def resolve(self, path: str) -> Path:
        return self.config_dir / path

    def write_key_file(self, path: str, data: bytes) -> Path:
        """Create the key file *path* (relative) with *data*.

        The file is created exclusively; a partially written file is
        removed before the error propagates.

        Raises
        ------
        KeyFileExistsError
            If *path* already exists.
        InternalError
            If the file cannot be written.

        """
        full = self.resolve(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        try:
            f = full.open("xb")
        except FileExistsError:
            raise KeyFileExistsError(path) from None
        except OSError as exc:
            raise InternalError(STEP_IO, f"creating key file {path}: {exc}") from exc
        try:
            with f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            full.chmod(0o600)
        except BaseException as exc:
            try:
                full.unlink()
            except OSError:
                log.exception("Failed to remove partial key file %s", full)
            if isinstance(exc, OSError):
                raise InternalError(STEP_IO, f"writing key file {path}: {exc}") from exc
            raise
        log.debug("Wrote key file %s", full)
        return full

    def retire_key_files(
        self,
        selectors: Mapping[str, Selector] | Iterable[Selector],
        live_paths: frozenset[str],
    ) -> list[str]:
        """Move key files of *selectors* not in *live_paths* to ``old/``.

        Never overwrites a retired file; such refusals and other errors
        are logged and skipped.  Returns the retired relative paths.
        """
        if hasattr(selectors, "values"):
            selectors = selectors.values()
        retired = []
        for sel in selectors:
            rel = os.path.normpath(sel.private_key_file) if sel.private_key_file else ""
            if not rel or rel in live_paths:
                continue
            src = self.resolve(rel)
            dst = src.parent / RETIRED_DIR / src.name
            if dst.exists():
                log.error(
                    "Not retiring key file %s: destination %s already exists",
                    src,
                    dst,
                )
                continue
            try:
                dst.parent.mkdir(parents=True, exist_ok=True)
                src.rename(dst)
            except OSError:
                log.exception("Failed to retire key file %s to %s", src, dst)
                continue
            log.info("Retired unused key file %s to %s", src, dst)
            retired.append(rel)
        return retired

    def load_key(self, path: str) -> PrivateKeyTypes:
        """Load the private key stored at relative *path*."""
        der, _headers = decode_pem(self.resolve(path).read_bytes())
        return serialization.load_der_private_key(der, password=None)
