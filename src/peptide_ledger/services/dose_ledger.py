"""
Dose ledger: the append-only, authoritative history of administered doses.

Replaying the ledger is the ground truth for how many units were drawn from
each vial.
"""

import logging

from peptide_ledger.domain.peptide import DoseLogEntry, Peptide, Vial
from peptide_ledger.services.units import PeptideDoseConverter
from peptide_ledger.utils.exceptions import DoseLogNotFoundError, NoActiveVialError

logger = logging.getLogger(__name__)


def append(peptide: Peptide, entry: DoseLogEntry) -> DoseLogEntry:
    """
    Append a dose to the peptide's ledger, drawn from the active vial.

    Args:
        peptide: Peptide receiving the entry.
        entry: Entry to append. Its vial_id is overwritten.

    Returns:
        The stored entry, stamped with the active vial id.

    Raises:
        NoActiveVialError: If the peptide has no active vial.
    """
    active = _active_vial(peptide)
    if active is None:
        raise NoActiveVialError(
            f"No active vial for {peptide.name}; activate a vial before logging doses"
        )

    stamped = entry.model_copy(update={"vial_id": active.id})
    peptide.dose_logs.append(stamped)
    logger.debug(f"Appended dose {stamped.id} to {peptide.name} (vial {active.id})")
    return stamped


def find(peptide: Peptide, entry_id: str) -> DoseLogEntry:
    """
    Look up a ledger entry.

    Raises:
        DoseLogNotFoundError: If the entry does not exist.
    """
    for entry in peptide.dose_logs:
        if entry.id == entry_id:
            return entry
    raise DoseLogNotFoundError(f"Dose log {entry_id} not found for peptide {peptide.id}")


def remove(peptide: Peptide, entry_id: str) -> DoseLogEntry:
    """
    Remove an entry from the ledger.

    Removing the same id twice fails on the second call.

    Returns:
        The removed entry.

    Raises:
        DoseLogNotFoundError: If the entry does not exist.
    """
    entry = find(peptide, entry_id)
    peptide.dose_logs = [e for e in peptide.dose_logs if e.id != entry_id]
    logger.debug(f"Removed dose {entry_id} from {peptide.name}")
    return entry


def entries_for_vial(peptide: Peptide, vial_id: str) -> list[DoseLogEntry]:
    """Ledger entries drawn from a vial, in log order."""
    return [e for e in peptide.dose_logs if e.vial_id == vial_id]


def used_units_for_vial(
    peptide: Peptide, vial_id: str, converter: PeptideDoseConverter
) -> int:
    """
    Replay the ledger to count units drawn from a vial.

    Independent of the vial's mutable counter.

    Args:
        peptide: Peptide owning the ledger.
        vial_id: Vial to count.
        converter: Dose converter for the peptide.

    Returns:
        Sum of converted units of the entries referencing the vial.
    """
    return sum(converter.units(e.dosage, e.unit) for e in entries_for_vial(peptide, vial_id))


def replayed_remaining(vial: Vial, used_units: int) -> int:
    """Remaining units of a vial according to the ledger, clamped at zero."""
    return max(0, vial.initial_amount_units - used_units)


def _active_vial(peptide: Peptide) -> Vial | None:
    return next((v for v in peptide.vials if v.is_active), None)
