"""
Peptide, vial and dose log domain models.

This module defines the schedule/log record of a peptide: its dosing
configuration, its vials with their lifecycle, and the append-only dose log.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


def new_id() -> str:
    """Generate a random record identifier."""
    return uuid.uuid4().hex


class TimeOfDay(str, Enum):
    """Time-of-day tag of a scheduled or logged dose."""

    AM = "AM"
    PM = "PM"


class ScheduleFrequency(str, Enum):
    """How often a peptide is scheduled."""

    DAILY = "daily"
    SPECIFIC_DAYS = "specific_days"


class VialStatus(str, Enum):
    """Lifecycle status of a vial."""

    INACTIVE = "inactive"
    ACTIVE = "active"
    COMPLETED = "completed"
    DISCARDED = "discarded"


TERMINAL_STATUSES = (VialStatus.COMPLETED, VialStatus.DISCARDED)


class VialCompletionType(str, Enum):
    """Reason a vial left service."""

    FULLY_USED = "fully_used"
    PARTIAL_WASTE = "partial_waste"
    EXPIRED = "expired"
    TRANSFERRED = "transferred"
    CONTAMINATED = "contaminated"
    LOST = "lost"
    DAMAGED = "damaged"
    OTHER = "other"

    @property
    def display(self) -> str:
        """Human-readable label."""
        return _COMPLETION_LABELS[self]


_COMPLETION_LABELS = {
    VialCompletionType.FULLY_USED: "Fully Used",
    VialCompletionType.PARTIAL_WASTE: "Partially Used",
    VialCompletionType.EXPIRED: "Expired",
    VialCompletionType.TRANSFERRED: "Transferred",
    VialCompletionType.CONTAMINATED: "Contaminated",
    VialCompletionType.LOST: "Lost",
    VialCompletionType.DAMAGED: "Damaged",
    VialCompletionType.OTHER: "Other",
}


class PeptideSchedule(BaseModel):
    """Dosing schedule of a peptide."""

    frequency: ScheduleFrequency = ScheduleFrequency.DAILY
    days_of_week: list[int] = Field(default_factory=list)
    times: list[TimeOfDay] = Field(default_factory=lambda: [TimeOfDay.AM])

    model_config = ConfigDict(use_enum_values=True)

    @model_validator(mode="after")
    def _check_days(self) -> "PeptideSchedule":
        if any(day < 0 or day > 6 for day in self.days_of_week):
            raise ValueError("days_of_week entries must be between 0 (Sunday) and 6 (Saturday)")
        if self.frequency == ScheduleFrequency.SPECIFIC_DAYS and not self.days_of_week:
            raise ValueError("specific_days schedules need at least one day of week")
        return self


class VialCompletion(BaseModel):
    """Completion record, written once when a vial becomes terminal."""

    type: VialCompletionType
    remaining_doses: int = Field(ge=0)
    wasted_doses: int = Field(ge=0)
    reason: str | None = None
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(use_enum_values=True)


class Vial(BaseModel):
    """
    A finite container of reconstituted peptide, measured in whole dosing units.

    Reconstitution fields are informational and never used by dose arithmetic.
    """

    id: str = Field(default_factory=new_id)
    name: str | None = None
    initial_amount_units: int = Field(ge=0, description="Capacity fixed at creation")
    remaining_amount_units: int = Field(ge=0, description="Cached projection of the ledger")
    status: VialStatus = VialStatus.INACTIVE
    completion: VialCompletion | None = None

    reconstitution_bac_water_ml: float | None = None
    total_peptide_in_vial_mcg: float | None = None
    typical_dose_mcg_for_calc: float | None = None
    reconstitution_date: datetime | None = None
    expiration_date: datetime | None = None
    date_added: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    notes: str | None = None

    discarded_at: datetime | None = None
    discard_reason: str | None = None

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)

    @property
    def is_active(self) -> bool:
        return self.status == VialStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class DoseLogEntry(BaseModel):
    """One administered dose. Entries are never edited, only removed."""

    id: str = Field(default_factory=new_id)
    timestamp: datetime
    time_of_day: TimeOfDay
    dosage: float
    unit: str
    vial_id: str | None = None
    volume_drawn_ml: float | None = None
    note: str | None = None

    model_config = ConfigDict(use_enum_values=True, frozen=True)


class DoseInput(BaseModel):
    """Caller-supplied data for logging a dose."""

    amount: float
    unit: str | None = None
    time_of_day: TimeOfDay | None = None
    timestamp: datetime | None = None
    volume_drawn_ml: float | None = None
    note: str | None = None

    model_config = ConfigDict(use_enum_values=True)


class Peptide(BaseModel):
    """
    Schedule/log record of a peptide.

    Owns its vials and its dose log so that both are saved in one document.
    """

    id: str = Field(default_factory=new_id)
    name: str
    dosage_unit: str = "mcg"
    typical_dose_amount: float | None = Field(
        None, description="Typical amount per dose in dosage_unit; None if not configured"
    )
    schedule: PeptideSchedule = Field(default_factory=PeptideSchedule)
    start_date: datetime | None = None
    notes: str | None = None
    vials: list[Vial] = Field(default_factory=list)
    dose_logs: list[DoseLogEntry] = Field(default_factory=list)
    version: int = Field(0, ge=0, description="Store version for optimistic concurrency")

    model_config = ConfigDict(use_enum_values=True)

    @model_validator(mode="after")
    def _check_single_active_vial(self) -> "Peptide":
        active = [v.id for v in self.vials if v.is_active]
        if len(active) > 1:
            raise ValueError(f"Peptide {self.id} has more than one active vial: {active}")
        return self


class ConsistencyDrift(BaseModel):
    """A detected mismatch between a vial counter and the ledger replay."""

    peptide_id: str
    vial_id: str
    stored_remaining: int
    replayed_remaining: int
    detected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
