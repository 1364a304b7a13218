"""
Inventory mirror sync.

Derives the denormalized inventory record from a peptide and pushes it to
the store as a best-effort follow-up write.
"""

import logging

from peptide_ledger.domain.inventory import ActiveVialStatus, InventoryMirrorRecord
from peptide_ledger.domain.peptide import Peptide, VialCompletionType, VialStatus
from peptide_ledger.infrastructure.persistence.base import PersistenceCollaborator
from peptide_ledger.services import dose_ledger
from peptide_ledger.services.units import PeptideDoseConverter, normalize_unit
from peptide_ledger.utils.exceptions import (
    MirrorNotFoundError,
    NotFoundError,
    PersistenceError,
    SerializationError,
)
from peptide_ledger.utils.parameters import LedgerConfig
from peptide_ledger.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


def derive_active_vial_status(peptide: Peptide, remaining: int) -> ActiveVialStatus:
    """
    Status of the vial in use, for inventory lists.

    With an active vial: IN_USE while doses remain, FINISHED otherwise.
    Without one, the most recently terminated vial decides: FINISHED if it was
    fully used, DISCARDED if it was discarded, NONE otherwise.
    """
    active = next((v for v in peptide.vials if v.is_active), None)
    if active is not None:
        return ActiveVialStatus.IN_USE if remaining > 0 else ActiveVialStatus.FINISHED

    terminated = [v for v in peptide.vials if v.is_terminal and v.completion is not None]
    if not terminated:
        return ActiveVialStatus.NONE

    latest = max(terminated, key=lambda v: v.completion.completed_at)
    if latest.status == VialStatus.DISCARDED:
        return ActiveVialStatus.DISCARDED
    if latest.completion.type == VialCompletionType.FULLY_USED:
        return ActiveVialStatus.FINISHED
    return ActiveVialStatus.NONE


def build_mirror(
    peptide: Peptide,
    converter: PeptideDoseConverter,
    existing: InventoryMirrorRecord | None = None,
) -> InventoryMirrorRecord:
    """
    Derive the inventory mirror of a peptide from its ledger.

    Args:
        peptide: Authoritative peptide.
        converter: Dose converter for the peptide.
        existing: Current mirror. Stock fields are carried over from it.

    Returns:
        A fresh mirror record.
    """
    active = next((v for v in peptide.vials if v.is_active), None)

    used = 0
    remaining = 0
    if active is not None:
        used = dose_ledger.used_units_for_vial(peptide, active.id, converter)
        remaining = dose_ledger.replayed_remaining(active, used)

    typical_dose_mcg = None
    if normalize_unit(converter.typical_unit) == "mcg":
        typical_dose_mcg = converter.typical_dose

    return InventoryMirrorRecord(
        id=peptide.id,
        name=peptide.name,
        num_vials=existing.num_vials if existing else 0,
        used_doses=used,
        remaining_doses=remaining,
        active_vial_status=derive_active_vial_status(peptide, remaining),
        active_vial_reconstitution_date=active.reconstitution_date if active else None,
        active_vial_expiry_date=active.expiration_date if active else None,
        typical_dose_mcg=typical_dose_mcg,
        low_stock_threshold=existing.low_stock_threshold if existing else None,
        updated_at=utc_now(),
    )


class InventoryMirrorSync:
    """
    Keeps inventory mirror records eventually consistent with the ledger.

    Push failures are logged and remembered, never raised: the ledger write
    they follow has already been committed. Stock fields live only in the
    mirror, so a push never overwrites a mirror it could not read.
    """

    def __init__(self, store: PersistenceCollaborator, config: LedgerConfig) -> None:
        """
        Initialize mirror sync.

        Args:
            store: Persistence collaborator.
            config: Ledger configuration.
        """
        self.store = store
        self.config = config
        self.pending: dict[str, int] = {}
        self.unsaved_seeds: dict[str, InventoryMirrorRecord] = {}

    def load(self, peptide_id: str) -> InventoryMirrorRecord | None:
        """Load the current mirror, or None if it is missing or unreadable."""
        try:
            return self.store.load_inventory_mirror(peptide_id)
        except MirrorNotFoundError:
            return None
        except (PersistenceError, SerializationError) as e:
            logger.warning(f"Could not load inventory mirror {peptide_id}: {e}")
            return None

    def _load_for_update(self, peptide_id: str) -> InventoryMirrorRecord | None:
        """
        Load the mirror a push starts from.

        A missing mirror falls back to the unsaved seed of the peptide, if any.
        A corrupted one is rebuilt without its stock fields.

        Raises:
            PersistenceError: If the store cannot be read.
        """
        try:
            return self.store.load_inventory_mirror(peptide_id)
        except MirrorNotFoundError:
            return self.unsaved_seeds.get(peptide_id)
        except SerializationError as e:
            logger.warning(
                f"Inventory mirror {peptide_id} is corrupted and will be rebuilt "
                f"without its stock fields: {e}"
            )
            return self.unsaved_seeds.get(peptide_id)

    def _defer(self, peptide: Peptide, delta: int, action: str, error: Exception) -> None:
        self.pending[peptide.id] = delta
        logger.warning(
            f"Inventory mirror {action} failed for {peptide.name} ({peptide.id}); "
            f"will reconcile on next read: {error}"
        )

    def push(
        self,
        peptide: Peptide,
        converter: PeptideDoseConverter,
        num_vials_delta: int = 0,
    ) -> InventoryMirrorRecord | None:
        """
        Recompute and save the mirror of a peptide.

        Args:
            peptide: Peptide just saved.
            converter: Dose converter for the peptide.
            num_vials_delta: Change to the unopened stock count. Deltas of
                failed pushes are carried over to the next push.

        Returns:
            The saved record, or None if the mirror could not be read or saved.
        """
        delta = num_vials_delta + self.pending.get(peptide.id, 0)

        try:
            existing = self._load_for_update(peptide.id)
        except PersistenceError as e:
            self._defer(peptide, delta, "read", e)
            return None

        record = build_mirror(peptide, converter, existing)
        if delta:
            record.num_vials = max(0, record.num_vials + delta)

        try:
            self.store.save_inventory_mirror(peptide.id, record)
        except PersistenceError as e:
            self._defer(peptide, delta, "push", e)
            return None

        self.pending.pop(peptide.id, None)
        self.unsaved_seeds.pop(peptide.id, None)
        logger.debug(
            f"Pushed inventory mirror for {peptide.name}: used={record.used_doses} "
            f"remaining={record.remaining_doses} status={record.active_vial_status}"
        )
        return record

    def seed(
        self,
        peptide: Peptide,
        converter: PeptideDoseConverter,
        num_vials: int = 0,
        low_stock_threshold: int | None = None,
    ) -> InventoryMirrorRecord | None:
        """
        Create the mirror of a newly registered peptide.

        A seed that cannot be saved is kept and used by the next push.

        Returns:
            The saved record, or None if the save failed.
        """
        template = InventoryMirrorRecord(
            id=peptide.id,
            name=peptide.name,
            num_vials=num_vials,
            low_stock_threshold=low_stock_threshold,
        )
        record = build_mirror(peptide, converter, template)

        try:
            self.store.save_inventory_mirror(peptide.id, record)
        except PersistenceError as e:
            self.unsaved_seeds[peptide.id] = template
            self._defer(peptide, 0, "creation", e)
            return None

        return record

    def is_stale(self, peptide: Peptide, converter: PeptideDoseConverter) -> bool:
        """True when the stored mirror is missing, pending, or disagrees with the ledger."""
        if peptide.id in self.pending:
            return True
        existing = self.load(peptide.id)
        if existing is None:
            return True
        return not build_mirror(peptide, converter, existing).same_counters(existing)

    def retry_pending(self) -> int:
        """
        Re-push every mirror whose last push failed.

        Returns:
            Number of mirrors pushed successfully.
        """
        pushed = 0
        for peptide_id in sorted(self.pending):
            try:
                peptide = self.store.load_peptide(peptide_id)
            except (NotFoundError, PersistenceError) as e:
                logger.warning(f"Cannot retry mirror for {peptide_id}: {e}")
                continue
            if self.push(peptide, PeptideDoseConverter(peptide, self.config)) is not None:
                pushed += 1
        return pushed
