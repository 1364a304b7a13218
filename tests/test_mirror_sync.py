"""Tests for inventory mirror derivation and best-effort sync."""

import pytest

from peptide_ledger.domain.inventory import ActiveVialStatus, InventoryMirrorRecord
from peptide_ledger.domain.peptide import DoseInput, Peptide, Vial
from peptide_ledger.infrastructure.persistence.memory import InMemoryStore
from peptide_ledger.services.mirror_sync import build_mirror, derive_active_vial_status
from peptide_ledger.services.reconciliation import ReconciliationEngine
from peptide_ledger.services.units import PeptideDoseConverter
from peptide_ledger.utils.exceptions import TransientStoreError
from peptide_ledger.utils.parameters import LedgerConfig

PEPTIDE_ID = "bpc-157"


class FlakyMirrorStore(InMemoryStore):
    """In-memory store whose inventory mirror reads and writes can fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_mirror = False
        self.failed_mirror_reads = 0

    def load_inventory_mirror(self, peptide_id: str) -> InventoryMirrorRecord:
        if self.failed_mirror_reads:
            self.failed_mirror_reads -= 1
            raise TransientStoreError("inventory store unavailable")
        return super().load_inventory_mirror(peptide_id)

    def save_inventory_mirror(self, peptide_id: str, record: InventoryMirrorRecord) -> None:
        if self.fail_mirror:
            raise TransientStoreError("inventory store unavailable")
        super().save_inventory_mirror(peptide_id, record)


@pytest.fixture
def store() -> FlakyMirrorStore:
    return FlakyMirrorStore()


def test_failed_push_keeps_ledger_write(
    engine: ReconciliationEngine, store: FlakyMirrorStore, active_vial: Vial
) -> None:
    """Test that a failed mirror push neither rolls back nor blocks the dose."""
    store.fail_mirror = True

    entry = engine.log_dose(PEPTIDE_ID, DoseInput(amount=300))

    peptide = store.load_peptide(PEPTIDE_ID)
    if [e.id for e in peptide.dose_logs] != [entry.id]:
        raise AssertionError("Expected the dose committed despite the mirror failure")

    if peptide.vials[0].remaining_amount_units != 29:
        raise AssertionError("Expected the vial counter committed")

    if store.load_inventory_mirror(PEPTIDE_ID).remaining_doses != 30:
        raise AssertionError("Expected the mirror to still show the old count")

    if PEPTIDE_ID not in engine.mirror.pending:
        raise AssertionError("Expected the failed push to be remembered")

    store.fail_mirror = False

    remaining = engine.remaining_doses(PEPTIDE_ID)

    if remaining != 29:
        raise AssertionError(f"Expected 29 doses remaining, got {remaining}")

    mirror = store.load_inventory_mirror(PEPTIDE_ID)
    if mirror.remaining_doses != 29 or mirror.used_doses != 1:
        raise AssertionError(f"Expected the mirror repaired on read, got {mirror}")

    if engine.mirror.pending:
        raise AssertionError("Expected no pending pushes after the repair")


def test_failed_push_keeps_stock_change(
    engine: ReconciliationEngine, store: FlakyMirrorStore, active_vial: Vial
) -> None:
    """Test that a stock decrement survives a failed push."""
    store.fail_mirror = True
    engine.add_vial(PEPTIDE_ID, initial_units=30)

    if engine.mirror.pending.get(PEPTIDE_ID) != -1:
        raise AssertionError(f"Expected pending delta -1, got {engine.mirror.pending}")

    store.fail_mirror = False
    pushed = engine.mirror.retry_pending()

    if pushed != 1:
        raise AssertionError(f"Expected one mirror pushed, got {pushed}")

    mirror = store.load_inventory_mirror(PEPTIDE_ID)
    if mirror.num_vials != 0:
        raise AssertionError(f"Expected stock 0, got {mirror.num_vials}")


def test_reconcile_recreates_missing_mirror(
    engine: ReconciliationEngine, store: FlakyMirrorStore, active_vial: Vial
) -> None:
    """Test that reconciliation rebuilds a deleted mirror from the ledger."""
    engine.log_dose(PEPTIDE_ID, DoseInput(amount=600))
    del store.collections["inventory_peptides"][PEPTIDE_ID]

    report = engine.reconcile(PEPTIDE_ID)

    if not report.mirror_repaired:
        raise AssertionError("Expected the mirror to be repaired")

    mirror = store.load_inventory_mirror(PEPTIDE_ID)
    if mirror.used_doses != 2 or mirror.remaining_doses != 28:
        raise AssertionError(f"Unexpected rebuilt mirror {mirror}")

    if mirror.active_vial_status != ActiveVialStatus.IN_USE:
        raise AssertionError(f"Expected IN_USE status, got {mirror.active_vial_status}")


def test_reconcile_leaves_fresh_mirror(engine: ReconciliationEngine, active_vial: Vial) -> None:
    """Test that an up to date mirror is not pushed again."""
    engine.log_dose(PEPTIDE_ID, DoseInput(amount=300))

    report = engine.reconcile(PEPTIDE_ID)

    if report.mirror_repaired or report.drift:
        raise AssertionError(f"Expected nothing to repair, got {report}")


def test_mirror_without_vials() -> None:
    """Test mirror derivation for a peptide with no vials."""
    config = LedgerConfig()
    peptide = Peptide(name="Semaglutide", dosage_unit="mg", typical_dose_amount=0.25)

    if derive_active_vial_status(peptide, 0) != ActiveVialStatus.NONE:
        raise AssertionError("Expected NONE without vials")

    mirror = build_mirror(peptide, PeptideDoseConverter(peptide, config))

    if mirror.used_doses != 0 or mirror.remaining_doses != 0 or mirror.num_vials != 0:
        raise AssertionError(f"Expected an empty mirror, got {mirror}")

    if mirror.typical_dose_mcg is not None:
        raise AssertionError("Expected no mcg typical dose for an mg peptide")


def test_unreadable_mirror_is_not_overwritten(
    engine: ReconciliationEngine, store: FlakyMirrorStore, active_vial: Vial
) -> None:
    """Test that a failed mirror read keeps the stock count."""
    before = store.load_inventory_mirror(PEPTIDE_ID)
    store.failed_mirror_reads = 1

    engine.log_dose(PEPTIDE_ID, DoseInput(amount=300))

    mirror = store.load_inventory_mirror(PEPTIDE_ID)
    if mirror.num_vials != before.num_vials or mirror.remaining_doses != 30:
        raise AssertionError(f"Expected the mirror left untouched, got {mirror}")

    if PEPTIDE_ID not in engine.mirror.pending:
        raise AssertionError("Expected the deferred push to be remembered")

    remaining = engine.remaining_doses(PEPTIDE_ID)

    mirror = store.load_inventory_mirror(PEPTIDE_ID)
    if remaining != 29 or mirror.remaining_doses != 29:
        raise AssertionError(f"Expected the mirror repaired to 29, got {mirror}")

    if mirror.num_vials != before.num_vials:
        raise AssertionError(f"Expected stock {before.num_vials}, got {mirror.num_vials}")


def test_unreadable_mirror_keeps_stock_delta(
    engine: ReconciliationEngine, store: FlakyMirrorStore, active_vial: Vial
) -> None:
    """Test that a stock decrement survives a failed mirror read."""
    store.failed_mirror_reads = 1
    engine.add_vial(PEPTIDE_ID, initial_units=30)

    if engine.mirror.pending.get(PEPTIDE_ID) != -1:
        raise AssertionError(f"Expected pending delta -1, got {engine.mirror.pending}")

    engine.mirror.retry_pending()

    mirror = store.load_inventory_mirror(PEPTIDE_ID)
    if mirror.num_vials != 0:
        raise AssertionError(f"Expected stock 0, got {mirror.num_vials}")


def test_failed_seed_keeps_stock_fields(
    engine: ReconciliationEngine, store: FlakyMirrorStore
) -> None:
    """Test that stock fields of a failed registration reach the next push."""
    store.fail_mirror = True
    engine.register_peptide(
        Peptide(id=PEPTIDE_ID, name="BPC-157", typical_dose_amount=300.0),
        num_vials=4,
        low_stock_threshold=2,
    )

    if PEPTIDE_ID not in engine.mirror.unsaved_seeds:
        raise AssertionError("Expected the unsaved seed to be kept")

    store.fail_mirror = False
    engine.add_vial(PEPTIDE_ID, initial_units=30)

    mirror = store.load_inventory_mirror(PEPTIDE_ID)
    if mirror.num_vials != 3 or mirror.low_stock_threshold != 2:
        raise AssertionError(f"Expected stock 3 and threshold 2, got {mirror}")

    if engine.mirror.unsaved_seeds or engine.mirror.pending:
        raise AssertionError("Expected nothing left to push")
