from __future__ import annotations

from typing import Final

# Callers branch on these values instead of parsing messages.
# SPAWN_FAILED, PROCESS_FAILED and TIMEOUT are infrastructure faults;
# COLOR_LEAK and COLOR_MISSING are assertion failures of the smoke check.
KNOWN_ERROR_TYPES: Final[set[str]] = {
    "COLOR_LEAK",
    "COLOR_MISSING",
    "INVALID_ARGUMENT",
    "NOT_FOUND",
    "PROCESS_FAILED",
    "SPAWN_FAILED",
    "TASK_FAILED",
    "TIMEOUT",
}


def assert_known_error_type(error_type: str) -> None:
    if error_type not in KNOWN_ERROR_TYPES:
        raise ValueError(f"Unknown error type: {error_type!r}. Add it to taskcheck.core.error_types.KNOWN_ERROR_TYPES.")
