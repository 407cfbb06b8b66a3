from __future__ import annotations

import pytest

from app.exceptions import (
    FAILURE_REASONS,
    FailureKind,
    ListNotFoundError,
    SlotNotFoundError,
    SourceError,
)


@pytest.mark.parametrize(
    ("status_code", "kind"),
    [
        (404, FailureKind.NOT_FOUND),
        (401, FailureKind.ACCESS_DENIED),
        (403, FailureKind.ACCESS_DENIED),
        (429, FailureKind.UNREACHABLE),
        (500, FailureKind.UNREACHABLE),
    ],
)
def test_status_codes_map_to_kinds(status_code: int, kind: FailureKind) -> None:
    assert FailureKind.from_status(status_code) is kind


def test_every_kind_has_a_reason() -> None:
    assert set(FAILURE_REASONS) == set(FailureKind)
    assert SourceError(FailureKind.EMPTY, "nothing").reason == "was empty"
    assert SourceError(FailureKind.INVALID_CONFIG, "Missing key").reason == "invalid config"


def test_not_found_errors_read_cleanly() -> None:
    assert str(SlotNotFoundError("abc")) == "Slot abc not found"
    assert str(ListNotFoundError("xyz")) == "List xyz not found"
    assert isinstance(SlotNotFoundError("abc"), KeyError)
