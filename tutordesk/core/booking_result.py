from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class RejectCode(str, Enum):
    MULTI_DAY_SPAN = 'MULTI_DAY_SPAN'
    STUDENT_REQUIRED = 'STUDENT_REQUIRED'
    NOT_ENROLLED = 'NOT_ENROLLED'
    TEACHER_UNQUALIFIED = 'TEACHER_UNQUALIFIED'
    OUTSIDE_AVAILABILITY = 'OUTSIDE_AVAILABILITY'
    DUPLICATE = 'DUPLICATE'
    TEACHER_CONFLICT = 'TEACHER_CONFLICT'
    ROOM_CONFLICT = 'ROOM_CONFLICT'
    CAPACITY_EXCEEDED = 'CAPACITY_EXCEEDED'
    ROOM_REQUIRED = 'ROOM_REQUIRED'
    NOT_FOUND = 'NOT_FOUND'


@dataclass(frozen=True)
class Accept:
    accepted: bool = True


@dataclass(frozen=True)
class Reject:
    code: RejectCode
    message: str
    detail: dict[str, Any] = field(default_factory=dict)
    accepted: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {'code': self.code.value, 'message': self.message, 'detail': dict(self.detail)}


ACCEPT = Accept()
Decision = Union[Accept, Reject]


class BookingRejected(ValueError):
    """Raised by mutations when a booking decision is a Reject."""

    def __init__(self, reject: Reject):
        super().__init__(reject.message)
        self.reject = reject

    @property
    def code(self) -> RejectCode:
        return self.reject.code


class InfraError(RuntimeError):
    pass


def not_found(entity: str, entity_id: Any) -> Reject:
    return Reject(RejectCode.NOT_FOUND, f'{entity} not found', {'entity': entity.lower(), 'id': entity_id})
