"""
Reconciliation engine for the dose ledger and vial inventory.

Every mutation loads the peptide document, applies the vial and ledger
changes in memory, recomputes each open vial's counter from the ledger, and
saves the document once. The inventory mirror is pushed afterwards as a
separate best-effort write.
"""

import logging
from datetime import datetime

from pydantic import BaseModel, Field

from peptide_ledger.domain.peptide import (
    ConsistencyDrift,
    DoseInput,
    DoseLogEntry,
    Peptide,
    Vial,
    VialCompletionType,
)
from peptide_ledger.infrastructure.persistence.base import PersistenceCollaborator
from peptide_ledger.services import dose_ledger
from peptide_ledger.services.mirror_sync import InventoryMirrorSync
from peptide_ledger.services.units import PeptideDoseConverter
from peptide_ledger.services.vial_store import VialStore
from peptide_ledger.utils.exceptions import (
    NoActiveVialError,
    PeptideLedgerError,
    PersistenceError,
    VialNotFoundError,
)
from peptide_ledger.utils.parameters import LedgerConfig
from peptide_ledger.utils.timezone_utils import make_timezone_aware, now_in, time_of_day_for

logger = logging.getLogger(__name__)


class ReconciliationReport(BaseModel):
    """Outcome of reconciling one peptide."""

    peptide_id: str
    active_vial_id: str | None = None
    used_units: int = 0
    remaining_doses: int = 0
    drift: list[ConsistencyDrift] = Field(default_factory=list)
    drift_corrected: bool = False
    mirror_repaired: bool = False


class ReconciliationEngine:
    """
    Owns the invariant between vial counters, the dose ledger and the
    inventory mirror.

    The ledger is authoritative. Vial counters are a cached projection of it:
    remaining = max(0, initial - units drawn by surviving entries).
    """

    def __init__(self, store: PersistenceCollaborator, config: LedgerConfig) -> None:
        """
        Initialize reconciliation engine.

        Args:
            store: Persistence collaborator.
            config: Ledger configuration.
        """
        self.store = store
        self.config = config
        self.vials = VialStore(config)
        self.mirror = InventoryMirrorSync(store, config)
        self.drift_events: list[ConsistencyDrift] = []

    def _converter(self, peptide: Peptide) -> PeptideDoseConverter:
        return PeptideDoseConverter(peptide, self.config)

    def _project(
        self, peptide: Peptide, converter: PeptideDoseConverter, detect: bool = True
    ) -> list[ConsistencyDrift]:
        """
        Recompute the counter of every open vial from the ledger.

        Args:
            peptide: Peptide to project, corrected in place.
            converter: Dose converter for the peptide.
            detect: Record mismatches as drift. Off when settling counters
                after this engine's own debit or credit.

        Returns:
            Drift found and corrected in place.
        """
        drifts: list[ConsistencyDrift] = []
        for vial in peptide.vials:
            if vial.is_terminal:
                continue

            used = dose_ledger.used_units_for_vial(peptide, vial.id, converter)
            replayed = dose_ledger.replayed_remaining(vial, used)
            if vial.remaining_amount_units == replayed:
                continue
            if not detect:
                vial.remaining_amount_units = replayed
                continue

            drift = ConsistencyDrift(
                peptide_id=peptide.id,
                vial_id=vial.id,
                stored_remaining=vial.remaining_amount_units,
                replayed_remaining=replayed,
            )
            logger.warning(
                f"Consistency drift on {peptide.name} vial {vial.id}: counter "
                f"{drift.stored_remaining}, ledger replay {drift.replayed_remaining}; "
                f"using ledger value"
            )
            vial.remaining_amount_units = replayed
            drifts.append(drift)
            self.drift_events.append(drift)
        return drifts

    def _commit(self, peptide: Peptide, expected_version: int) -> Peptide:
        return self.store.save_peptide(peptide.id, peptide, expected_version=expected_version)

    def register_peptide(
        self,
        peptide: Peptide,
        num_vials: int = 0,
        low_stock_threshold: int | None = None,
    ) -> Peptide:
        """
        Create a peptide document and its inventory mirror.

        Args:
            peptide: New peptide.
            num_vials: Unopened vials in stock.
            low_stock_threshold: Optional low stock warning level for lists.

        Returns:
            The saved peptide.

        Raises:
            ConflictError: If a peptide with the same id already exists.
        """
        converter = self._converter(peptide)
        self._project(peptide, converter)
        saved = self.store.save_peptide(
            peptide.id, peptide.model_copy(update={"version": 0}), expected_version=0
        )
        self.mirror.seed(saved, converter, num_vials, low_stock_threshold)
        logger.info(f"Registered peptide {saved.name} ({saved.id})")
        return saved

    def log_dose(self, peptide_id: str, dose_input: DoseInput) -> DoseLogEntry:
        """
        Log a dose against the active vial.

        Args:
            peptide_id: Peptide being dosed.
            dose_input: Amount, unit and optional timing of the dose.

        Returns:
            The stored ledger entry.

        Raises:
            PeptideNotFoundError: If the peptide does not exist.
            NoActiveVialError: If no vial is active.
            ValidationError: If the amount or unit is invalid.
            PersistenceError: If the peptide document cannot be saved.
        """
        peptide = self.store.load_peptide(peptide_id)
        expected_version = peptide.version
        converter = self._converter(peptide)

        active = self.vials.active_vial(peptide)
        if active is None:
            raise NoActiveVialError(
                f"No active vial for {peptide.name}; activate a vial before logging doses"
            )

        unit = dose_input.unit or peptide.dosage_unit
        units = converter.units(dose_input.amount, unit)
        self._project(peptide, converter)

        if dose_input.timestamp is None:
            timestamp = now_in(self.config.timezone)
        else:
            timestamp = make_timezone_aware(
                dose_input.timestamp, self.config.timezone, assume_local=True
            )
        entry = DoseLogEntry(
            timestamp=timestamp,
            time_of_day=dose_input.time_of_day or time_of_day_for(timestamp),
            dosage=dose_input.amount,
            unit=unit,
            volume_drawn_ml=dose_input.volume_drawn_ml,
            note=dose_input.note,
        )

        self.vials.debit(active, units)
        stored = dose_ledger.append(peptide, entry)
        self._project(peptide, converter, detect=False)

        saved = self._commit(peptide, expected_version)
        self.mirror.push(saved, converter)

        logger.info(
            f"Logged {stored.dosage}{stored.unit} of {peptide.name} from vial {active.id} "
            f"({units} units, {active.remaining_amount_units} remaining)"
        )
        return stored

    def revert_dose(self, peptide_id: str, entry_id: str) -> Peptide:
        """
        Revert a logged dose, crediting the vial it was drawn from.

        The credited vial is the entry's vial, which may no longer be the
        active one. Entries whose vial is completed, discarded or gone are
        removed without a credit.

        Returns:
            The saved peptide.

        Raises:
            DoseLogNotFoundError: If the entry does not exist (including a second revert).
            PersistenceError: If the peptide document cannot be saved.
        """
        peptide = self.store.load_peptide(peptide_id)
        expected_version = peptide.version
        converter = self._converter(peptide)

        entry = dose_ledger.find(peptide, entry_id)
        units = converter.units(entry.dosage, entry.unit)
        self._project(peptide, converter)

        vial: Vial | None
        try:
            vial = self.vials.find(peptide, entry.vial_id or "")
        except VialNotFoundError:
            vial = None

        if vial is None:
            logger.warning(
                f"Reverting dose {entry_id} of {peptide.name}: vial {entry.vial_id} "
                f"no longer exists; no credit applied"
            )
        elif vial.is_terminal:
            logger.info(
                f"Reverting dose {entry_id} of {peptide.name}: vial {vial.id} is "
                f"{vial.status}; no credit applied"
            )
        else:
            self.vials.credit(vial, units)

        dose_ledger.remove(peptide, entry_id)
        self._project(peptide, converter, detect=False)

        saved = self._commit(peptide, expected_version)
        self.mirror.push(saved, converter)

        logger.info(f"Reverted dose {entry_id} of {peptide.name} ({units} units)")
        return saved

    def activate_vial(self, peptide_id: str, vial_id: str) -> Peptide:
        """
        Make a vial the active one.

        Raises:
            VialNotFoundError: If the vial does not belong to the peptide.
            VialTerminalError: If the vial is completed or discarded.
        """
        peptide = self.store.load_peptide(peptide_id)
        expected_version = peptide.version
        converter = self._converter(peptide)

        self._project(peptide, converter)
        self.vials.activate(peptide, vial_id)

        saved = self._commit(peptide, expected_version)
        self.mirror.push(saved, converter)
        return saved

    def add_vial(
        self,
        peptide_id: str,
        initial_units: int | None = None,
        total_peptide_mcg: float | None = None,
        reconstitution_date: datetime | None = None,
        bac_water_ml: float | None = None,
        name: str | None = None,
        activate: bool = True,
        from_stock: bool = True,
    ) -> Vial:
        """
        Reconstitute a new vial for a peptide.

        Args:
            peptide_id: Peptide receiving the vial.
            initial_units: Explicit capacity in doses.
            total_peptide_mcg: Peptide powder in the vial; used when
                initial_units is omitted.
            reconstitution_date: When the vial was reconstituted.
            bac_water_ml: Diluent volume.
            name: Optional label.
            activate: Make the new vial the active one.
            from_stock: Take the vial from the unopened stock count.

        Returns:
            The new vial.
        """
        peptide = self.store.load_peptide(peptide_id)
        expected_version = peptide.version
        converter = self._converter(peptide)

        if reconstitution_date is not None:
            reconstitution_date = make_timezone_aware(
                reconstitution_date, self.config.timezone, assume_local=True
            )

        self._project(peptide, converter)
        vial = self.vials.add_vial(
            peptide,
            converter.typical_dose,
            converter.typical_unit,
            initial_units=initial_units,
            total_peptide_mcg=total_peptide_mcg,
            reconstitution_date=reconstitution_date,
            bac_water_ml=bac_water_ml,
            name=name,
            activate=activate,
        )

        saved = self._commit(peptide, expected_version)
        self.mirror.push(saved, converter, num_vials_delta=-1 if from_stock else 0)
        return self.vials.find(saved, vial.id)

    def complete_vial(
        self,
        peptide_id: str,
        vial_id: str,
        completion_type: VialCompletionType,
        reason: str | None = None,
    ) -> Vial:
        """
        Complete a vial. Wasted doses are the ledger-replayed remaining units.

        Raises:
            VialNotFoundError: If the vial does not belong to the peptide.
            VialTerminalError: If the vial is already completed or discarded.
        """
        peptide = self.store.load_peptide(peptide_id)
        expected_version = peptide.version
        converter = self._converter(peptide)

        vial = self.vials.find(peptide, vial_id)
        self._project(peptide, converter)
        self.vials.complete(vial, completion_type, reason)

        saved = self._commit(peptide, expected_version)
        self.mirror.push(saved, converter)
        return self.vials.find(saved, vial_id)

    def discard_vial(self, peptide_id: str, vial_id: str, reason: str) -> Vial:
        """
        Discard a vial.

        Raises:
            VialNotFoundError: If the vial does not belong to the peptide.
            VialTerminalError: If the vial is already completed or discarded.
        """
        peptide = self.store.load_peptide(peptide_id)
        expected_version = peptide.version
        converter = self._converter(peptide)

        vial = self.vials.find(peptide, vial_id)
        self._project(peptide, converter)
        self.vials.discard(vial, reason)

        saved = self._commit(peptide, expected_version)
        self.mirror.push(saved, converter)
        return self.vials.find(saved, vial_id)

    def reconcile(self, peptide_id: str) -> ReconciliationReport:
        """
        Replay the ledger of a peptide and repair its derived state.

        Drift between vial counters and the ledger is logged, recorded and
        corrected with the ledger value. A stale or pending inventory mirror
        is pushed again.

        Returns:
            What was found and repaired.
        """
        peptide = self.store.load_peptide(peptide_id)
        expected_version = peptide.version
        converter = self._converter(peptide)

        drifts = self._project(peptide, converter)
        corrected = False
        if drifts:
            try:
                peptide = self._commit(peptide, expected_version)
                corrected = True
            except PersistenceError as e:
                logger.warning(
                    f"Could not persist drift correction for {peptide.name}: {e}"
                )

        mirror_repaired = False
        if self.mirror.is_stale(peptide, converter):
            mirror_repaired = self.mirror.push(peptide, converter) is not None

        report = ReconciliationReport(
            peptide_id=peptide.id,
            drift=drifts,
            drift_corrected=corrected,
            mirror_repaired=mirror_repaired,
        )
        active = self.vials.active_vial(peptide)
        if active is not None:
            report.active_vial_id = active.id
            report.used_units = dose_ledger.used_units_for_vial(peptide, active.id, converter)
            report.remaining_doses = dose_ledger.replayed_remaining(active, report.used_units)
        return report

    def reconcile_all(self) -> list[ReconciliationReport]:
        """Reconcile every stored peptide, logging the ones that fail."""
        reports: list[ReconciliationReport] = []
        for peptide_id in self.store.list_peptide_ids():
            try:
                reports.append(self.reconcile(peptide_id))
            except PeptideLedgerError as e:
                logger.error(f"Failed to reconcile {peptide_id}: {e}")
        return reports

    def remaining_doses(self, peptide_id: str) -> int:
        """
        Doses left in the active vial, from the ledger replay.

        Reconciles the peptide as a side effect. Returns 0 with no active vial.
        """
        return self.reconcile(peptide_id).remaining_doses
