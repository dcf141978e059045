import base64
import binascii
from datetime import date, datetime, time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shiftdesk.errors import invalid
from shiftdesk.models import (
    AttendanceStatus,
    CalendarExceptionKind,
    LeaveType,
    PenaltyStatus,
    RequestStatus,
    WorkType,
)
from shiftdesk.services.collaborators import ProofFile

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"
MAX_PROOF_BYTES = 8 * 1024 * 1024


class ProofUpload(BaseModel):
    filename: str = Field(min_length=1, max_length=255)
    content_base64: str = Field(min_length=1)
    content_type: str | None = Field(default=None, max_length=100)

    def to_proof_file(self) -> ProofFile:
        try:
            content = base64.b64decode(self.content_base64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise invalid("INVALID_PROOF", "Proof file is not valid base64.") from exc
        return ProofFile(filename=self.filename, content=content, content_type=self.content_type)

    @field_validator("content_base64")
    @classmethod
    def _check_size(cls, value: str) -> str:
        if len(value) * 3 // 4 > MAX_PROOF_BYTES:
            raise ValueError("proof file is too large")
        return value


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=255)


class MemberRead(BaseModel):
    id: int
    username: str
    full_name: str
    is_admin: bool
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class MemberCreate(BaseModel):
    username: str = Field(min_length=2, max_length=100)
    full_name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=8, max_length=255)
    is_admin: bool = False


class MemberUpdate(BaseModel):
    full_name: str | None = Field(default=None, min_length=1, max_length=255)
    is_admin: bool | None = None
    is_active: bool | None = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    member: MemberRead


class LocationZoneCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    radius_m: float = Field(gt=0, le=50000)
    is_active: bool = True


class LocationZoneRead(LocationZoneCreate):
    id: int

    model_config = ConfigDict(from_attributes=True)


class AttendanceDayRead(BaseModel):
    id: int
    user_id: int
    shift_date: date
    check_in_at: datetime | None = None
    check_out_at: datetime | None = None
    work_type: WorkType
    status: AttendanceStatus
    is_late: bool
    is_correction: bool
    wfh_approved: bool
    proof_url: str | None = None
    check_in_lat: float | None = None
    check_in_lng: float | None = None
    check_in_location_name: str | None = None
    check_out_lat: float | None = None
    check_out_lng: float | None = None
    check_out_location_name: str | None = None
    early_leave_reason: str | None = None
    missing_minutes: int
    leave_request_id: int | None = None
    note: str | None = None

    model_config = ConfigDict(from_attributes=True)


class CheckInRequest(BaseModel):
    work_type: WorkType
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)
    location_name: str | None = Field(default=None, max_length=255)
    is_correction: bool = False
    note: str | None = Field(default=None, max_length=1000)
    proof: ProofUpload | None = None


class CheckOutRequest(BaseModel):
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)
    location_name: str | None = Field(default=None, max_length=255)
    reason: str | None = Field(default=None, max_length=1000)


class ManualCheckInRequest(BaseModel):
    check_in_time: str = Field(pattern=HHMM_PATTERN)
    reason: str = Field(min_length=1, max_length=1000)
    work_type: WorkType = WorkType.OFFICE
    proof: ProofUpload | None = None


class CheckInResponse(BaseModel):
    ok: bool = True
    day: AttendanceDayRead
    game_status: str
    zone_name: str | None = None
    distance_m: float | None = None
    warnings: list[str] = Field(default_factory=list)


class CheckOutResponse(BaseModel):
    ok: bool = True
    day: AttendanceDayRead
    is_duration_met: bool
    missing_minutes: int
    hours_worked: float
    required_end_at: datetime
    warnings: list[str] = Field(default_factory=list)


class AttendanceDayActionResponse(BaseModel):
    ok: bool = True
    day: AttendanceDayRead
    warnings: list[str] = Field(default_factory=list)


class WorkPolicyRead(BaseModel):
    start_time: time
    late_buffer_minutes: int
    min_hours: float


class TodayStatusResponse(BaseModel):
    today: AttendanceDayRead | None = None
    open_session: AttendanceDayRead | None = None
    open_session_outdated: bool = False
    action_required: AttendanceDayRead | None = None
    policy: WorkPolicyRead


class AttendanceStatsResponse(BaseModel):
    year: int
    month: int
    days_present: int
    leave_days: int
    late_count: int
    on_time_count: int
    total_hours: float
    on_time_streak: int


class AttendanceHistoryResponse(BaseModel):
    items: list[AttendanceDayRead]
    total: int
    page: int
    page_size: int
    superseded: bool = False


class CheckOutOverrideRequest(BaseModel):
    check_out_at: datetime
    note: str | None = Field(default=None, max_length=1000)


class DecisionRequest(BaseModel):
    accept: bool


class LeaveRequestCreate(BaseModel):
    type: LeaveType
    start_date: date
    end_date: date | None = None
    reason: str = Field(min_length=1, max_length=1000)
    target_time: str | None = Field(default=None, pattern=HHMM_PATTERN)
    overtime_hours: float | None = Field(default=None, gt=0, le=24)
    attachment: ProofUpload | None = None


class LeaveRequestRead(BaseModel):
    id: int
    user_id: int
    type: LeaveType
    start_date: date
    end_date: date
    reason: str
    target_time: time | None = None
    overtime_hours: float | None = None
    attachment_url: str | None = None
    status: RequestStatus
    approver_id: int | None = None
    rejection_reason: str | None = None
    created_at: datetime
    decided_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class QuotaLineRead(BaseModel):
    leave_type: LeaveType
    quota: int | None = None
    used: int
    remaining: int | None = None

    model_config = ConfigDict(from_attributes=True)


class LeaveSubmissionResponse(BaseModel):
    request: LeaveRequestRead
    quota: list[QuotaLineRead]
    requested_units: int
    over_quota: bool
    warnings: list[str] = Field(default_factory=list)


class LeaveRejectRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class LeaveActionResponse(BaseModel):
    request: LeaveRequestRead
    warnings: list[str] = Field(default_factory=list)


class QuotaResponse(BaseModel):
    period_year: int
    lines: list[QuotaLineRead]


class DutyRead(BaseModel):
    id: int
    title: str
    assignee_id: int
    duty_date: date
    is_done: bool
    proof_image_url: str | None = None
    is_penalized: bool
    penalty_status: PenaltyStatus
    appeal_reason: str | None = None
    appeal_proof_url: str | None = None
    abandoned_at: datetime | None = None
    cleared_by_system: bool

    model_config = ConfigDict(from_attributes=True)


class DutyCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    assignee_id: int = Field(ge=1)
    duty_date: date


class DutyConfigUpsert(BaseModel):
    required_people: int = Field(ge=1, le=20)
    task_titles: list[str] = Field(default_factory=list, max_length=20)


class DutyConfigRead(BaseModel):
    day_of_week: int
    required_people: int
    task_titles: list[str]


class RotationRequest(BaseModel):
    start_date: date
    mode: Literal["ROTATION", "DURATION"] = "ROTATION"
    weeks: int = Field(default=1, ge=1, le=26)
    member_ids: list[int] | None = None


class DutyToggleRequest(BaseModel):
    expected_is_done: bool


class DutyProofRequest(BaseModel):
    proof: ProofUpload


class DutyRedeemRequest(BaseModel):
    proof: ProofUpload | None = None


class DutyAppealRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)
    proof: ProofUpload | None = None


class DutyActionResponse(BaseModel):
    duty: DutyRead
    warnings: list[str] = Field(default_factory=list)


class DutyAcknowledgeResponse(DutyActionResponse):
    negligence_lock_seconds: int


class NegligenceChangeRead(BaseModel):
    duty_id: int
    previous: PenaltyStatus
    current: PenaltyStatus

    model_config = ConfigDict(from_attributes=True)


class MyDutiesResponse(BaseModel):
    duties: list[DutyRead]
    neglected: list[DutyRead]
    changes: list[NegligenceChangeRead]
    negligence_lock_seconds: int
    warnings: list[str] = Field(default_factory=list)


class SwapCreate(BaseModel):
    own_duty_id: int = Field(ge=1)
    target_duty_id: int = Field(ge=1)

    @model_validator(mode="after")
    def _distinct(self) -> "SwapCreate":
        if self.own_duty_id == self.target_duty_id:
            raise ValueError("own_duty_id and target_duty_id must differ")
        return self


class SwapRead(BaseModel):
    id: int
    requestor_id: int
    own_duty_id: int
    target_duty_id: int
    status: RequestStatus
    created_at: datetime
    decided_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class SwapActionResponse(BaseModel):
    swap: SwapRead
    warnings: list[str] = Field(default_factory=list)


class WorkConfigUpdate(BaseModel):
    values: dict[str, str] = Field(min_length=1)


class AnnualHolidayCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    month: int = Field(ge=1, le=12)
    day: int = Field(ge=1, le=31)
    is_active: bool = True


class AnnualHolidayRead(AnnualHolidayCreate):
    id: int

    model_config = ConfigDict(from_attributes=True)


class CalendarExceptionCreate(BaseModel):
    day_date: date
    kind: CalendarExceptionKind
    note: str | None = Field(default=None, max_length=500)


class CalendarExceptionRead(CalendarExceptionCreate):
    id: int

    model_config = ConfigDict(from_attributes=True)


class RetentionCleanupResponse(BaseModel):
    attendance_deleted: int
    duties_deleted: int
