"""
Pydantic Models for the timetable, attendance sessions and recognition output,
plus request bodies for input validation.
"""
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from attendance_engine.utils.time_utils import (
    WEEKDAYS,
    compute_end_time,
    ensure_utc,
    normalize_time,
    parse_time,
)


class AttendanceStatus(str, Enum):
    ABSENT = "absent"
    PRESENT = "present"
    NOT_CONSIDERED = "not-considered"


def _normalize_days(days: List[str]) -> List[str]:
    normalized = []
    for day in days:
        name = str(day).strip().capitalize()
        if name not in WEEKDAYS:
            raise ValueError(f"Invalid weekday: {day!r}")
        if name not in normalized:
            normalized.append(name)
    if not normalized:
        raise ValueError("At least one weekday is required")
    return normalized


class Slot(BaseModel):
    """One recurring weekly time window of a section."""
    days: List[str]
    start_time: str
    end_time: Optional[str] = None

    @field_validator("days")
    @classmethod
    def validate_days(cls, v):
        return _normalize_days(v)

    @model_validator(mode="after")
    def fill_end_time(self):
        self.start_time = normalize_time(self.start_time)
        if not self.end_time:
            self.end_time = compute_end_time(self.start_time)
        else:
            self.end_time = normalize_time(self.end_time)
        if parse_time(self.end_time) <= parse_time(self.start_time):
            raise ValueError(f"Slot end {self.end_time} must be after start {self.start_time}")
        return self


class Student(BaseModel):
    id: str
    name: str
    reg_no: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Student":
        return cls(
            id=str(doc["_id"]),
            name=doc.get("name", ""),
            reg_no=doc.get("reg_no") or doc.get("regNo"),
            email=doc.get("email"),
        )


class Section(BaseModel):
    """A recurring teaching assignment with its weekly timetable and roster."""
    id: str
    name: str
    room: str
    course_id: Optional[str] = None
    teacher_id: Optional[str] = None
    students: List[str] = Field(default_factory=list)
    slots: List[Slot] = Field(default_factory=list)

    @field_validator("students")
    @classmethod
    def dedupe_students(cls, v):
        seen = []
        for student_id in v:
            if student_id not in seen:
                seen.append(student_id)
        return seen

    def slots_on(self, weekday: str) -> List[Slot]:
        return [slot for slot in self.slots if weekday in slot.days]

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Section":
        return cls(
            id=str(doc["_id"]),
            name=doc.get("name", ""),
            room=doc.get("room", ""),
            course_id=str(doc["course_id"]) if doc.get("course_id") is not None else None,
            teacher_id=str(doc["teacher_id"]) if doc.get("teacher_id") is not None else None,
            students=[str(s) for s in doc.get("students", [])],
            slots=[Slot(**slot) for slot in doc.get("slots", [])],
        )


class RosterEntry(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    student_id: str
    status: AttendanceStatus = AttendanceStatus.ABSENT
    marked_at: Optional[datetime] = None
    confidence: Optional[float] = None


class RosterView(RosterEntry):
    """Roster entry joined with the student's profile for responses."""
    name: Optional[str] = None
    reg_no: Optional[str] = None

    @classmethod
    def build(cls, entry: RosterEntry, profile: Optional[Student]) -> "RosterView":
        return cls(
            **entry.model_dump(),
            name=profile.name if profile is not None else None,
            reg_no=profile.reg_no if profile is not None else None,
        )


class AttendanceSession(BaseModel):
    """A dated, concrete occurrence of a slot holding the attendance roster."""
    model_config = ConfigDict(use_enum_values=True)

    id: Optional[str] = None
    section_id: str
    course_id: Optional[str] = None
    marked_by: Optional[str] = None
    date: str
    day: str
    start_time: str
    end_time: str
    room: str
    topic: Optional[str] = None
    is_extra_class: bool = False
    is_locked: bool = False
    locked_at: Optional[datetime] = None
    lock_deadline: datetime
    students: List[RosterEntry] = Field(default_factory=list)
    total_present: int = 0
    total_absent: int = 0
    total_not_considered: int = 0
    attendance_percentage: float = 0.0
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> tuple:
        return (self.section_id, self.date, self.start_time)

    @property
    def calendar_date(self) -> date:
        return date.fromisoformat(self.date)

    def recompute_totals(self) -> None:
        """Derive counts and percentage from the roster; never set them directly."""
        self.total_present = sum(1 for s in self.students if s.status == AttendanceStatus.PRESENT)
        self.total_absent = sum(1 for s in self.students if s.status == AttendanceStatus.ABSENT)
        self.total_not_considered = sum(
            1 for s in self.students if s.status == AttendanceStatus.NOT_CONSIDERED
        )
        total = len(self.students)
        self.attendance_percentage = round(self.total_present / total * 100, 1) if total else 0.0

    def roster_entry(self, student_id: str) -> Optional[RosterEntry]:
        for entry in self.students:
            if entry.student_id == student_id:
                return entry
        return None

    def to_document(self) -> Dict[str, Any]:
        doc = self.model_dump(exclude={"id"})
        if self.id is not None:
            doc["_id"] = self.id
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "AttendanceSession":
        data = dict(doc)
        data["id"] = str(data.pop("_id"))
        for field in ("locked_at", "lock_deadline", "created_at", "updated_at"):
            data[field] = ensure_utc(data.get(field))
        data["students"] = [
            {**entry, "marked_at": ensure_utc(entry.get("marked_at"))}
            for entry in data.get("students", [])
        ]
        return cls(**data)

    def summary(self) -> Dict[str, Any]:
        """Compact listing form used by the dashboard endpoints."""
        return {
            "id": self.id,
            "section_id": self.section_id,
            "course_id": self.course_id,
            "date": self.date,
            "day": self.day,
            "time": f"{self.start_time} - {self.end_time}",
            "room": self.room,
            "is_extra_class": self.is_extra_class,
            "status": "Completed" if self.is_locked else "Scheduled",
            "total_students": len(self.students),
            "present_count": self.total_present,
        }


class RecognitionMatch(BaseModel):
    identity: str
    confidence: float = 0.0
    bbox: Optional[List[float]] = None
    student_id: Optional[str] = None


class RecognitionResult(BaseModel):
    """Normalized output of one batch submission (not persisted)."""
    matches: List[RecognitionMatch] = Field(default_factory=list)
    shape: str
    summary: Optional[Dict[str, Any]] = None


class ReconciliationOutcome(BaseModel):
    session_id: str
    roster: List[RosterView]
    present_count: int
    absent_count: int
    not_considered_count: int
    percentage: float
    recognized: List[str] = Field(default_factory=list)
    unmatched: List[str] = Field(default_factory=list)


class AdHocOutcome(BaseModel):
    start_time: str
    end_time: Optional[str] = None
    session_id: Optional[str] = None
    error: Optional[str] = None
    conflict: Optional[Dict[str, Any]] = None

    @property
    def created(self) -> bool:
        return self.session_id is not None


class AdHocSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    section_id: str = Field(..., min_length=1, alias="sectionId")
    date: str = Field(..., min_length=1)
    time_slots: List[str] = Field(..., min_length=1, alias="timeSlots")
    marked_by: Optional[str] = Field(None, alias="markedBy")
    room: Optional[str] = None
    topic: Optional[str] = None
    duration_minutes: Optional[int] = Field(None, gt=0, alias="durationMinutes")


class PermanentSlotRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    days: List[str] = Field(..., min_length=1)
    start_time: str = Field(..., alias="startTime")
    end_time: Optional[str] = Field(None, alias="endTime")


class UnlockRequest(BaseModel):
    actor: str = Field(..., min_length=1)


class StatusOverrideRequest(BaseModel):
    status: AttendanceStatus
