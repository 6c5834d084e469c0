"""Problem types for configuration operations.

Two classes of failure exist:

* :class:`RequestError` -- caused by the caller (unknown or duplicate
  entity, malformed address, removal of a still-referenced entity).
  Safe to retry after correcting the request, never leaves state behind.
* :class:`InternalError` -- I/O, persistence or collaborator failures.
  Carries the failing ``step`` so operators can tell what broke.

Usage::

    raise RequestError(ALREADY_EXISTS, "domain already present")
"""

from __future__ import annotations

from typing import Any

# ---------------------------------------------------------------------------
# Error-type URNs
# ---------------------------------------------------------------------------
_P = "urn:mailcfg:error:"

ALREADY_EXISTS = _P + "alreadyExists"
NOT_FOUND = _P + "notFound"
MALFORMED = _P + "malformed"
UNSUPPORTED = _P + "unsupported"
REFERENCED = _P + "referenced"
LAST_MEMBER = _P + "lastMember"
QUEUE_DEPENDENCY = _P + "queueDependency"
INVALID_CONFIG = _P + "invalidConfig"
SERVER_INTERNAL = _P + "serverInternal"

# Steps reported by internal errors
STEP_IO = "io"
STEP_PERSISTENCE = "persistence"
STEP_COLLABORATOR = "collaborator"
STEP_KEYGEN = "keygen"


# ---------------------------------------------------------------------------
# Problem exceptions
# ---------------------------------------------------------------------------


class ConfigProblem(Exception):
    """Base class for all failures reported by configuration operations.

    Parameters
    ----------
    error_type:
        A URN string (one of the constants above).
    detail:
        Human-readable explanation of the problem.

    """

    def __init__(self, error_type: str, detail: str) -> None:
        self.error_type = error_type
        self.detail = detail
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to a JSON-compatible structure."""
        return {"type": self.error_type, "detail": self.detail}


class RequestError(ConfigProblem):
    """The request cannot be applied to the current configuration."""


class InternalError(ConfigProblem):
    """An operational failure prevented the change from being applied.

    Parameters
    ----------
    step:
        Which step failed (``io``, ``persistence``, ``collaborator``,
        ``keygen``).
    detail:
        Description including path or underlying error.

    """

    def __init__(self, step: str, detail: str) -> None:
        self.step = step
        super().__init__(SERVER_INTERNAL, detail)

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["step"] = self.step
        return body


class KeyGenerationError(InternalError):
    """Key material could not be generated or encoded."""

    def __init__(self, detail: str) -> None:
        super().__init__(STEP_KEYGEN, detail)


class KeyFileExistsError(InternalError):
    """A key file could not be created because its path is taken."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(STEP_IO, f"key file {path} already exists")


class ConfigDocumentError(InternalError):
    """The persisted configuration document is invalid.

    Collects every problem found so they can be reported at once.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(STEP_PERSISTENCE, f"configuration document invalid:\n{body}")
