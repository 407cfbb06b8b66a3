"""Error types shared by the list providers and the slot services."""

from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    """Why an upstream list could not be fetched."""

    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"
    EMPTY = "empty"
    INVALID_CONFIG = "invalid_config"
    UNREACHABLE = "unreachable"

    @classmethod
    def from_status(cls, status_code: int) -> "FailureKind":
        if status_code == 404:
            return cls.NOT_FOUND
        if status_code in {401, 403}:
            return cls.ACCESS_DENIED
        return cls.UNREACHABLE


FAILURE_REASONS: dict[FailureKind, str] = {
    FailureKind.NOT_FOUND: "not found",
    FailureKind.ACCESS_DENIED: "access denied",
    FailureKind.EMPTY: "was empty",
    FailureKind.INVALID_CONFIG: "invalid config",
    FailureKind.UNREACHABLE: "unreachable",
}


class SourceError(Exception):
    """Raised by a provider client when a list cannot be fetched."""

    def __init__(self, kind: FailureKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def reason(self) -> str:
        """Short human readable reason shown next to the failed list."""

        return FAILURE_REASONS[self.kind]


class ListValidationError(ValueError):
    """Raised when a source list configuration cannot be accessed."""


class SlotNotFoundError(KeyError):
    def __init__(self, slot_id: str):
        super().__init__(f"Slot {slot_id} not found")
        self.slot_id = slot_id

    def __str__(self) -> str:
        return str(self.args[0])


class ListNotFoundError(KeyError):
    def __init__(self, list_id: str):
        super().__init__(f"List {list_id} not found")
        self.list_id = list_id

    def __str__(self) -> str:
        return str(self.args[0])
