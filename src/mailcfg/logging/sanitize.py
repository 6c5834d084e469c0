"""Sensitive data sanitization for log output.

Provides :func:`sanitize_for_logs` which redacts private key material
(PEM bodies) from data structures before they are written to log files
or the audit log.  BEGIN/END markers and any PEM headers such as the
provenance note are preserved.
"""

from __future__ import annotations

import re
from typing import Any

# Regex matching the body inside PEM blocks
_PEM_BODY_RE = re.compile(
    r"(-----BEGIN [A-Z0-9 ]+-----)"
    r"([\s\S]*?)"
    r"(-----END [A-Z0-9 ]+-----)",
)

_PEM_HEADER_RE = re.compile(r"^[A-Za-z-]+: .*$", re.MULTILINE)


def sanitize_pem(pem: str) -> str:
    """Replace the base64 body of PEM blocks with ``[REDACTED]``.

    Keeps the BEGIN/END markers and header lines so the kind of key
    and its note stay visible.
    """

    def _redact(m) -> str:
        headers = _PEM_HEADER_RE.findall(m.group(2))
        kept = "".join(f"{h}\n" for h in headers)
        return f"{m.group(1)}\n{kept}[REDACTED]\n{m.group(3)}"

    return _PEM_BODY_RE.sub(_redact, pem)


def sanitize_for_logs(data: Any) -> Any:  # noqa: ANN401
    """Recursively sanitize sensitive material in *data*.

    Handles dicts, lists, tuples, bytes and plain strings.
    Non-sensitive data passes through unchanged.
    """
    if isinstance(data, dict):
        return {k: sanitize_for_logs(v) for k, v in data.items()}

    if isinstance(data, (list, tuple)):
        return type(data)(sanitize_for_logs(item) for item in data)

    if isinstance(data, bytes) and b"-----BEGIN " in data:
        return sanitize_pem(data.decode("ascii", errors="replace"))

    if isinstance(data, str):
        if "-----BEGIN " in data:
            return sanitize_pem(data)
        return data

    return data
