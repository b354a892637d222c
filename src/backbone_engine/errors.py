from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class BackboneError(Exception):
    pass


class DatasetStructureError(BackboneError):
    def __init__(self, problems: list[str]) -> None:
        self.problems = list(problems)
        super().__init__("invalid dataset structure: " + "; ".join(self.problems))


class ValidationError(BackboneError):
    def __init__(self, record_type: str, record_id: str, problems: list[str]) -> None:
        self.record_type = record_type
        self.record_id = record_id
        self.problems = list(problems)
        super().__init__(f"{record_type}:{record_id} invalid: " + "; ".join(self.problems))

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": "ValidationError",
            "record_type": self.record_type,
            "record_id": self.record_id,
            "problems": list(self.problems),
        }


class InvariantViolation(BackboneError):
    def __init__(self, rule: str, offender: str, detail: str = "") -> None:
        self.rule = rule
        self.offender = offender
        self.detail = detail
        msg = f"[{rule}] {offender}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class LowConfidenceWarning(UserWarning):
    def __init__(self, subject: str, reason: str, confidence: float) -> None:
        self.subject = subject
        self.reason = reason
        self.confidence = float(confidence)
        super().__init__(f"{subject}: {reason} (confidence={self.confidence:.2f})")

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": "LowConfidenceWarning",
            "subject": self.subject,
            "reason": self.reason,
            "confidence": self.confidence,
        }


@dataclass(slots=True, frozen=True)
class ColdStartNullResult:
    """Neutral value returned when a generator or lift bucket lacks data."""

    subject: str
    observations: int = 0
    required: int = 0
    notes: tuple[str, ...] = field(default_factory=tuple)

    def __bool__(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": "ColdStartNullResult",
            "subject": self.subject,
            "observations": self.observations,
            "required": self.required,
            "notes": list(self.notes),
        }
