"""
Vial store: lifecycle and counter mutations of a peptide's vials.

All methods mutate the in-memory peptide only. Persisting the result is the
reconciliation engine's job, so every mutation of one operation lands in a
single save of the peptide document.
"""

import logging
from datetime import datetime

from peptide_ledger.domain.peptide import (
    Peptide,
    Vial,
    VialCompletion,
    VialCompletionType,
    VialStatus,
)
from peptide_ledger.services.units import doses_per_vial
from peptide_ledger.utils.exceptions import ValidationError, VialNotFoundError, VialTerminalError
from peptide_ledger.utils.parameters import LedgerConfig
from peptide_ledger.utils.timezone_utils import expiry_after, utc_now

logger = logging.getLogger(__name__)


class VialStore:
    """
    Operations on the vials of a peptide.

    Keeps the single-active-vial invariant and the terminal lifecycle rules.
    """

    def __init__(self, config: LedgerConfig) -> None:
        """
        Initialize vial store.

        Args:
            config: Ledger configuration.
        """
        self.config = config

    def find(self, peptide: Peptide, vial_id: str) -> Vial:
        """
        Find a vial of the peptide.

        Raises:
            VialNotFoundError: If the vial does not belong to the peptide.
        """
        for vial in peptide.vials:
            if vial.id == vial_id:
                return vial
        raise VialNotFoundError(f"Vial {vial_id} not found for peptide {peptide.id}")

    def active_vial(self, peptide: Peptide) -> Vial | None:
        """Return the active vial, or None."""
        for vial in peptide.vials:
            if vial.is_active:
                return vial
        return None

    def activate(self, peptide: Peptide, vial_id: str) -> Vial:
        """
        Make a vial the active one and demote every other active vial.

        Args:
            peptide: Peptide owning the vial.
            vial_id: Vial to activate.

        Returns:
            The activated vial.

        Raises:
            VialNotFoundError: If the vial does not belong to the peptide.
            VialTerminalError: If the vial is completed or discarded.
        """
        target = self.find(peptide, vial_id)
        if target.is_terminal:
            raise VialTerminalError(f"Vial {vial_id} is {target.status} and cannot be activated")

        for vial in peptide.vials:
            if vial.id != vial_id and vial.is_active:
                vial.status = VialStatus.INACTIVE
                logger.debug(f"Vial {vial.id} of {peptide.name} demoted to inactive")

        target.status = VialStatus.ACTIVE
        logger.info(f"Activated vial {vial_id} of {peptide.name}")
        return target

    def debit(self, vial: Vial, units: int) -> int:
        """
        Draw units from a vial, clamping at zero.

        Overdraws never fail: inventory limits are advisory.

        Returns:
            The new remaining units.
        """
        remaining = vial.remaining_amount_units - units
        if remaining < 0:
            logger.info(
                f"Vial {vial.id} overdrawn by {-remaining} units; remaining clamped at 0"
            )
        vial.remaining_amount_units = max(0, remaining)
        return vial.remaining_amount_units

    def credit(self, vial: Vial, units: int) -> int:
        """
        Return units to a vial.

        Uncapped unless clamp_credit_to_initial is configured.

        Returns:
            The new remaining units.
        """
        remaining = vial.remaining_amount_units + units
        if remaining > vial.initial_amount_units:
            if self.config.clamp_credit_to_initial:
                logger.info(
                    f"Vial {vial.id} credit clamped at initial {vial.initial_amount_units}"
                )
                remaining = vial.initial_amount_units
            else:
                logger.warning(
                    f"Vial {vial.id} remaining {remaining} exceeds initial "
                    f"{vial.initial_amount_units} after credit"
                )
        vial.remaining_amount_units = remaining
        return remaining

    def complete(
        self,
        vial: Vial,
        completion_type: VialCompletionType,
        reason: str | None = None,
    ) -> VialCompletion:
        """
        Mark a vial as completed.

        Args:
            vial: Vial to complete.
            completion_type: Why the vial left service.
            reason: Optional free-text details.

        Returns:
            The completion record.

        Raises:
            VialTerminalError: If the vial is already completed or discarded.
        """
        self._require_not_terminal(vial)

        remaining = max(0, vial.remaining_amount_units)
        completion = VialCompletion(
            type=completion_type,
            remaining_doses=remaining,
            wasted_doses=remaining,
            reason=reason,
            completed_at=utc_now(),
        )
        vial.completion = completion
        vial.status = VialStatus.COMPLETED
        vial.notes = _append_note(
            vial.notes,
            f"Completed on {completion.completed_at.date().isoformat()} - "
            f"Type: {VialCompletionType(completion_type).display}"
            + (f" - {reason}" if reason else ""),
        )
        logger.info(f"Completed vial {vial.id} ({completion_type}); {remaining} doses wasted")
        return completion

    def discard(
        self,
        vial: Vial,
        reason: str,
        completion_type: VialCompletionType = VialCompletionType.OTHER,
    ) -> VialCompletion:
        """
        Discard a vial. Irreversible.

        Remaining units are recorded as wasted and the counter drops to zero.

        Raises:
            VialTerminalError: If the vial is already completed or discarded.
        """
        self._require_not_terminal(vial)

        now = utc_now()
        remaining = max(0, vial.remaining_amount_units)
        completion = VialCompletion(
            type=completion_type,
            remaining_doses=remaining,
            wasted_doses=remaining,
            reason=reason,
            completed_at=now,
        )
        vial.completion = completion
        vial.status = VialStatus.DISCARDED
        vial.discarded_at = now
        vial.discard_reason = reason
        vial.remaining_amount_units = 0
        vial.notes = _append_note(
            vial.notes, f"Discarded on {now.date().isoformat()} - Reason: {reason}"
        )
        logger.info(f"Discarded vial {vial.id}: {reason}; {remaining} doses wasted")
        return completion

    def add_vial(
        self,
        peptide: Peptide,
        typical_dose: float,
        typical_unit: str,
        initial_units: int | None = None,
        total_peptide_mcg: float | None = None,
        reconstitution_date: datetime | None = None,
        bac_water_ml: float | None = None,
        name: str | None = None,
        activate: bool = True,
    ) -> Vial:
        """
        Add a reconstituted vial to a peptide.

        Args:
            peptide: Peptide receiving the vial.
            typical_dose: Amount of one vial unit.
            typical_unit: Unit of typical_dose.
            initial_units: Explicit capacity in doses. Computed from
                total_peptide_mcg when omitted.
            total_peptide_mcg: Peptide powder in the vial.
            reconstitution_date: When the vial was reconstituted. Defaults to now.
            bac_water_ml: Diluent volume. Defaults to the configured volume.
            name: Optional label.
            activate: Make the new vial the active one.

        Returns:
            The new vial.

        Raises:
            ValidationError: If neither capacity source is given or capacity is negative.
        """
        if initial_units is None:
            if total_peptide_mcg is None:
                raise ValidationError("Either initial_units or total_peptide_mcg is required")
            initial_units = doses_per_vial(total_peptide_mcg, typical_dose, typical_unit)
        elif initial_units < 0:
            raise ValidationError(f"Vial capacity cannot be negative, got {initial_units}")

        reconstituted = reconstitution_date or utc_now()
        bac_water = bac_water_ml or self.config.default_bac_water_ml

        vial = Vial(
            name=name,
            initial_amount_units=initial_units,
            remaining_amount_units=initial_units,
            reconstitution_bac_water_ml=bac_water,
            total_peptide_in_vial_mcg=total_peptide_mcg,
            typical_dose_mcg_for_calc=typical_dose if typical_unit == "mcg" else None,
            reconstitution_date=reconstituted,
            expiration_date=expiry_after(reconstituted, self.config.vial_shelf_life_days),
            notes=f"Reconstituted with {bac_water}mL BAC water",
        )
        peptide.vials.append(vial)
        logger.info(f"Added vial {vial.id} to {peptide.name} with {initial_units} doses")

        if activate:
            self.activate(peptide, vial.id)

        return vial

    def _require_not_terminal(self, vial: Vial) -> None:
        if vial.is_terminal:
            raise VialTerminalError(f"Vial {vial.id} is already {vial.status}")


def _append_note(notes: str | None, note: str) -> str:
    return f"{notes} | {note}" if notes else note
