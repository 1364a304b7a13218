"""
Inventory mirror domain model.

The mirror is a denormalized list-view record kept loosely in sync with the
peptide's dose log. It is never authoritative.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ActiveVialStatus(str, Enum):
    """Status of the vial in use, as shown in inventory lists."""

    NONE = "NONE"
    IN_USE = "IN_USE"
    FINISHED = "FINISHED"
    DISCARDED = "DISCARDED"


class InventoryMirrorRecord(BaseModel):
    """Denormalized inventory record keyed by the peptide id."""

    id: str = Field(description="Peptide id")
    name: str
    num_vials: int = Field(0, ge=0, description="Unopened vials in stock")
    used_doses: int = Field(0, ge=0, description="Doses drawn from the active vial")
    remaining_doses: int = Field(0, ge=0, description="Doses left in the active vial")
    active_vial_status: ActiveVialStatus = ActiveVialStatus.NONE
    active_vial_reconstitution_date: datetime | None = None
    active_vial_expiry_date: datetime | None = None
    typical_dose_mcg: float | None = None
    low_stock_threshold: int | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(use_enum_values=True)

    def same_counters(self, other: "InventoryMirrorRecord") -> bool:
        """True when the derived fields of both records agree."""
        return (
            self.used_doses == other.used_doses
            and self.remaining_doses == other.remaining_doses
            and self.active_vial_status == other.active_vial_status
            and self.num_vials == other.num_vials
            and self.active_vial_reconstitution_date == other.active_vial_reconstitution_date
            and self.active_vial_expiry_date == other.active_vial_expiry_date
        )
