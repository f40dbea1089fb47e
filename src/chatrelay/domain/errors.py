"""Domain Error Taxonomy.

Every failure a turn can surface maps to one of these classes. They also
inherit from the matching builtin exception (ValueError for bad input,
LookupError/KeyError for missing things), so callers that only know the
builtins keep working.

Hierarchy:
    ChatRelayError
    ├─ InputValidationError (ValueError): empty input, empty model requirement
    │  └─ RequirementSyntaxError: malformed requirement operator
    ├─ ModelNotFoundError (LookupError): no online model matches
    ├─ InvocationError: model call failed or was aborted
    └─ StorageError: history persistence failed
       └─ ExchangeNotFoundError (KeyError): unknown exchange id

Tool failures have no class here: they are converted to string results
and handed back to the model.
"""

from __future__ import annotations


class ChatRelayError(Exception):
    """Base class for all domain errors."""


class InputValidationError(ChatRelayError, ValueError):
    """Turn input rejected before any side effect took place."""


class RequirementSyntaxError(InputValidationError):
    """Requirement query contained an operator outside the supported set."""


class ModelNotFoundError(ChatRelayError, LookupError):
    """No registered model satisfied the query and answered its probe."""


class InvocationError(ChatRelayError):
    """The model client failed or the run was aborted."""


class StorageError(ChatRelayError):
    """The history backend could not persist or load an exchange."""


class ExchangeNotFoundError(StorageError, KeyError):
    """Exchange id not present in the history backend."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ""


__all__ = [
    "ChatRelayError",
    "ExchangeNotFoundError",
    "InputValidationError",
    "InvocationError",
    "ModelNotFoundError",
    "RequirementSyntaxError",
    "StorageError",
]
