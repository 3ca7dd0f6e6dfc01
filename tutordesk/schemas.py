from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


class SessionCreateRequest(BaseModel):
    class_id: int
    start_at: datetime
    end_at: datetime
    student_id: int | None = None
    teacher_id: int | None = None


class BookingValidateRequest(BaseModel):
    class_id: int | None = None
    teacher_id: int | None = None
    room_id: int | None = None
    campus_id: int | None = None
    subject_id: int | None = None
    course_id: int | None = None
    capacity: int | None = Field(default=None, ge=1)
    student_id: int | None = None
    start_at: datetime
    end_at: datetime


class ReplaceTeacherRequest(BaseModel):
    session_id: int | None = None
    appointment_id: int | None = None
    new_teacher_id: int
    scope: Literal['single', 'future'] = 'single'
    reason: str | None = Field(default=None, max_length=255)


class AppointmentCreateRequest(BaseModel):
    teacher_id: int
    student_id: int
    start_at: datetime
    end_at: datetime


class OneOnOneKeyPayload(BaseModel):
    teacher_id: int
    course_id: int
    subject_id: int | None = None
    level_id: int | None = None
    campus_id: int
    room_id: int | None = None


class OneOnOneScheduleRequest(OneOnOneKeyPayload):
    student_id: int
    start_at: datetime
    end_at: datetime


class WeeklyGenerateRequest(BaseModel):
    class_id: int
    weekday: int = Field(ge=0, le=6)
    start_time: str = Field(pattern=r'^\d{2}:\d{2}$')
    duration_min: int = Field(ge=15, le=24 * 60)
    start_date: date
    weeks: int | None = Field(default=None, ge=1, le=52)
    end_date: date | None = None
    on_conflict: Literal['REJECT', 'SKIP'] = 'REJECT'
    student_id: int | None = None


class TemplateGenerateRequest(BaseModel):
    teacher_id: int
    start_date: date
    end_date: date
    template_ids: list[int] | None = None
    on_conflict: Literal['REJECT', 'SKIP'] = 'SKIP'


class ClassRoomChangeRequest(BaseModel):
    room_id: int | None = None
    range_from: date | None = None
    range_to: date | None = None


class SlotVisibilityRequest(BaseModel):
    teacher_id: int
    start_at: datetime
    end_at: datetime
    visible: bool = True


class AvailabilityRuleRequest(BaseModel):
    teacher_id: int
    weekday: int = Field(ge=0, le=6)
    start_time: str = Field(pattern=r'^\d{2}:\d{2}$')
    end_time: str = Field(pattern=r'^\d{2}:\d{2}$')


class OverrideSlot(BaseModel):
    start_time: str = Field(pattern=r'^\d{2}:\d{2}$')
    end_time: str = Field(pattern=r'^\d{2}:\d{2}$')


class AvailabilityOverrideRequest(BaseModel):
    teacher_id: int
    date: date
    slots: list[OverrideSlot] = Field(default_factory=list)


class GenerateMonthRequest(BaseModel):
    teacher_id: int
    year: int = Field(ge=2000, le=2100)
    month: int = Field(ge=1, le=12)
    mode: Literal['sync', 'merge'] = 'merge'
