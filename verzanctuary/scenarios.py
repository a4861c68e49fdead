from __future__ import annotations

import enum


class BackupScenario(enum.Enum):
    """Named moments worth a snapshot, each with its canned commit message."""

    BEFORE_AI_CONSULT = "before_ai_consult"
    BEFORE_REFACTOR = "before_refactor"
    END_OF_DAY = "end_of_day"
    BEFORE_EXPERIMENT = "before_experiment"
    WORKING_STATE = "working_state"

    @property
    def message(self) -> str:
        return _MESSAGES[self]

    @classmethod
    def parse(cls, value: str) -> "BackupScenario":
        key = value.strip().lower().replace("-", "_")
        for s in cls:
            if s.value == key:
                return s
        valid = ", ".join(s.value for s in cls)
        raise ValueError(f"unknown scenario: {value} (expected one of: {valid})")


_MESSAGES = {
    BackupScenario.BEFORE_AI_CONSULT: "Before AI consultation",
    BackupScenario.BEFORE_REFACTOR: "Before refactoring",
    BackupScenario.END_OF_DAY: "End of day sanctuary",
    BackupScenario.BEFORE_EXPERIMENT: "Before experimental changes",
    BackupScenario.WORKING_STATE: "Stable working state",
}
