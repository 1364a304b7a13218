"""Tests for the reconciliation engine over the in-memory store."""

from datetime import datetime

import pytest

from peptide_ledger.domain.inventory import ActiveVialStatus
from peptide_ledger.domain.peptide import (
    DoseInput,
    DoseLogEntry,
    Peptide,
    Vial,
    VialCompletionType,
    VialStatus,
)
from peptide_ledger.infrastructure.persistence.memory import InMemoryStore
from peptide_ledger.services import dose_ledger
from peptide_ledger.services.reconciliation import ReconciliationEngine
from peptide_ledger.services.units import PeptideDoseConverter
from peptide_ledger.utils.exceptions import (
    ConflictError,
    DoseLogNotFoundError,
    NoActiveVialError,
    ValidationError,
    VialTerminalError,
)

PEPTIDE_ID = "bpc-157"


def _log(engine: ReconciliationEngine, count: int, amount: float = 300) -> list[DoseLogEntry]:
    return [engine.log_dose(PEPTIDE_ID, DoseInput(amount=amount)) for _ in range(count)]


def _assert_ledger_consistent(engine: ReconciliationEngine) -> None:
    peptide = engine.store.load_peptide(PEPTIDE_ID)
    converter = PeptideDoseConverter(peptide, engine.config)
    for vial in peptide.vials:
        if vial.is_terminal:
            continue
        used = dose_ledger.used_units_for_vial(peptide, vial.id, converter)
        expected = max(0, vial.initial_amount_units - used)
        if vial.remaining_amount_units != expected:
            raise AssertionError(
                f"Vial {vial.id} counter {vial.remaining_amount_units} != ledger {expected}"
            )


def _vial(engine: ReconciliationEngine, vial_id: str) -> Vial:
    peptide = engine.store.load_peptide(PEPTIDE_ID)
    return next(v for v in peptide.vials if v.id == vial_id)


def test_log_and_revert_restores_counter(engine: ReconciliationEngine, active_vial: Vial) -> None:
    """Test ten logged doses followed by three reverts on a 30-dose vial."""
    entries = _log(engine, 10)

    if _vial(engine, active_vial.id).remaining_amount_units != 20:
        raise AssertionError("Expected 20 doses left after logging 10")

    for entry in entries[:3]:
        engine.revert_dose(PEPTIDE_ID, entry.id)

    vial = _vial(engine, active_vial.id)
    if vial.remaining_amount_units != 23:
        raise AssertionError(f"Expected 23 doses left, got {vial.remaining_amount_units}")

    peptide = engine.store.load_peptide(PEPTIDE_ID)
    if len(peptide.dose_logs) != 7:
        raise AssertionError(f"Expected 7 ledger entries, got {len(peptide.dose_logs)}")

    mirror = engine.store.load_inventory_mirror(PEPTIDE_ID)
    if mirror.used_doses != 7 or mirror.remaining_doses != 23:
        raise AssertionError(
            f"Expected mirror 7 used / 23 remaining, "
            f"got {mirror.used_doses}/{mirror.remaining_doses}"
        )

    _assert_ledger_consistent(engine)


def test_log_then_revert_round_trip(engine: ReconciliationEngine, active_vial: Vial) -> None:
    """Test that logging then reverting a dose leaves the vial as it was."""
    before = _vial(engine, active_vial.id)

    entry = engine.log_dose(PEPTIDE_ID, DoseInput(amount=450, note="split dose"))
    engine.revert_dose(PEPTIDE_ID, entry.id)

    after = _vial(engine, active_vial.id)
    if after.remaining_amount_units != before.remaining_amount_units:
        raise AssertionError(
            f"Expected {before.remaining_amount_units} remaining, "
            f"got {after.remaining_amount_units}"
        )

    if engine.store.load_peptide(PEPTIDE_ID).dose_logs:
        raise AssertionError("Expected an empty ledger after the revert")


def test_double_revert_fails(engine: ReconciliationEngine, active_vial: Vial) -> None:
    """Test that a dose cannot be credited twice."""
    entry = _log(engine, 2)[0]
    engine.revert_dose(PEPTIDE_ID, entry.id)

    with pytest.raises(DoseLogNotFoundError):
        engine.revert_dose(PEPTIDE_ID, entry.id)

    if _vial(engine, active_vial.id).remaining_amount_units != 29:
        raise AssertionError("Expected the failed revert to leave the counter at 29")


def test_log_without_active_vial(engine: ReconciliationEngine, peptide: Peptide) -> None:
    """Test that logging without an active vial changes nothing."""
    with pytest.raises(NoActiveVialError):
        engine.log_dose(PEPTIDE_ID, DoseInput(amount=300))

    stored = engine.store.load_peptide(PEPTIDE_ID)
    if stored.dose_logs or stored.version != peptide.version:
        raise AssertionError("Expected no write after a rejected dose")


def test_empty_vial_does_not_block_logging(engine: ReconciliationEngine, peptide: Peptide) -> None:
    """Test that doses are logged past the end of a vial."""
    vial = engine.add_vial(PEPTIDE_ID, initial_units=1)

    entries = _log(engine, 3)

    stored = _vial(engine, vial.id)
    if stored.remaining_amount_units != 0:
        raise AssertionError(f"Expected 0 remaining, got {stored.remaining_amount_units}")

    if len(engine.store.load_peptide(PEPTIDE_ID).dose_logs) != 3:
        raise AssertionError("Expected all three doses logged")

    mirror = engine.store.load_inventory_mirror(PEPTIDE_ID)
    if mirror.active_vial_status != ActiveVialStatus.FINISHED:
        raise AssertionError(f"Expected FINISHED status, got {mirror.active_vial_status}")

    engine.revert_dose(PEPTIDE_ID, entries[0].id)

    if _vial(engine, vial.id).remaining_amount_units != 0:
        raise AssertionError("Expected the vial to stay empty with two doses still logged")

    if engine.drift_events:
        raise AssertionError(f"Expected no drift, got {engine.drift_events}")

    _assert_ledger_consistent(engine)


def test_revert_credits_original_vial(engine: ReconciliationEngine, active_vial: Vial) -> None:
    """Test reverting a dose after another vial was activated."""
    entries = _log(engine, 2)
    second = engine.add_vial(PEPTIDE_ID, initial_units=30)

    engine.revert_dose(PEPTIDE_ID, entries[0].id)

    first = _vial(engine, active_vial.id)
    if first.remaining_amount_units != 29:
        raise AssertionError(f"Expected first vial at 29, got {first.remaining_amount_units}")

    if first.status != VialStatus.INACTIVE:
        raise AssertionError("Expected first vial to stay inactive")

    current = _vial(engine, second.id)
    if current.remaining_amount_units != 30 or not current.is_active:
        raise AssertionError("Expected the active vial to be untouched")

    mirror = engine.store.load_inventory_mirror(PEPTIDE_ID)
    if mirror.num_vials != 0:
        raise AssertionError(f"Expected stock 0 after two vials, got {mirror.num_vials}")

    _assert_ledger_consistent(engine)


def test_revert_on_completed_vial_skips_credit(
    engine: ReconciliationEngine, active_vial: Vial
) -> None:
    """Test that completed vials are not credited."""
    entries = _log(engine, 2)
    completed = engine.complete_vial(
        PEPTIDE_ID, active_vial.id, VialCompletionType.PARTIAL_WASTE, "Switched protocol"
    )

    if completed.completion is None or completed.completion.wasted_doses != 28:
        raise AssertionError(f"Expected 28 wasted doses, got {completed.completion}")

    engine.revert_dose(PEPTIDE_ID, entries[0].id)

    vial = _vial(engine, active_vial.id)
    if vial.remaining_amount_units != 28 or vial.status != VialStatus.COMPLETED:
        raise AssertionError("Expected the completed vial to be left as it was")

    if len(engine.store.load_peptide(PEPTIDE_ID).dose_logs) != 1:
        raise AssertionError("Expected the reverted entry removed from the ledger")


def test_terminal_vials_reject_transitions(
    engine: ReconciliationEngine, active_vial: Vial
) -> None:
    """Test that completed vials cannot be completed, discarded or activated."""
    _log(engine, 5)
    vial = engine.complete_vial(PEPTIDE_ID, active_vial.id, VialCompletionType.FULLY_USED)

    if vial.completion is None or vial.completion.remaining_doses != 25:
        raise AssertionError(f"Expected 25 remaining at completion, got {vial.completion}")

    with pytest.raises(VialTerminalError):
        engine.complete_vial(PEPTIDE_ID, active_vial.id, VialCompletionType.EXPIRED)

    with pytest.raises(VialTerminalError):
        engine.discard_vial(PEPTIDE_ID, active_vial.id, "Late discard")

    with pytest.raises(VialTerminalError):
        engine.activate_vial(PEPTIDE_ID, active_vial.id)

    with pytest.raises(NoActiveVialError):
        engine.log_dose(PEPTIDE_ID, DoseInput(amount=300))

    mirror = engine.store.load_inventory_mirror(PEPTIDE_ID)
    if mirror.active_vial_status != ActiveVialStatus.FINISHED:
        raise AssertionError(f"Expected FINISHED status, got {mirror.active_vial_status}")


def test_discard_vial(engine: ReconciliationEngine, active_vial: Vial) -> None:
    """Test discarding the active vial."""
    _log(engine, 4)

    vial = engine.discard_vial(PEPTIDE_ID, active_vial.id, "Left out of the fridge")

    if vial.remaining_amount_units != 0 or vial.status != VialStatus.DISCARDED:
        raise AssertionError("Expected an empty discarded vial")

    if vial.completion is None or vial.completion.wasted_doses != 26:
        raise AssertionError(f"Expected 26 wasted doses, got {vial.completion}")

    mirror = engine.store.load_inventory_mirror(PEPTIDE_ID)
    if mirror.active_vial_status != ActiveVialStatus.DISCARDED:
        raise AssertionError(f"Expected DISCARDED status, got {mirror.active_vial_status}")

    if mirror.remaining_doses != 0:
        raise AssertionError("Expected no remaining doses without an active vial")


def test_reconcile_corrects_drift(
    engine: ReconciliationEngine, store: InMemoryStore, active_vial: Vial
) -> None:
    """Test that a tampered counter is replaced by the ledger replay."""
    _log(engine, 4)
    store.collections["peptides"][PEPTIDE_ID]["vials"][0]["remainingAmountUnits"] = 5

    report = engine.reconcile(PEPTIDE_ID)

    if len(report.drift) != 1:
        raise AssertionError(f"Expected one drift, got {report.drift}")

    drift = report.drift[0]
    if drift.stored_remaining != 5 or drift.replayed_remaining != 26:
        raise AssertionError(f"Unexpected drift {drift}")

    if not report.drift_corrected or report.remaining_doses != 26:
        raise AssertionError(f"Expected corrected counter 26, got {report}")

    if _vial(engine, active_vial.id).remaining_amount_units != 26:
        raise AssertionError("Expected the corrected counter to be saved")

    if engine.drift_events != [drift]:
        raise AssertionError("Expected the drift recorded on the engine")


def test_stale_writer_conflicts(engine: ReconciliationEngine, active_vial: Vial) -> None:
    """Test that saving over a newer version is rejected."""
    stale = engine.store.load_peptide(PEPTIDE_ID)
    _log(engine, 1)

    with pytest.raises(ConflictError):
        engine.store.save_peptide(PEPTIDE_ID, stale, expected_version=stale.version)


def test_dose_timestamp_and_time_of_day(engine: ReconciliationEngine, active_vial: Vial) -> None:
    """Test that the time-of-day tag follows the dose timestamp."""
    entry = engine.log_dose(
        PEPTIDE_ID, DoseInput(amount=300, timestamp=datetime(2024, 1, 15, 20, 30))
    )

    if entry.time_of_day != "PM":
        raise AssertionError(f"Expected PM, got {entry.time_of_day}")

    if entry.timestamp.tzinfo is None:
        raise AssertionError("Expected a timezone-aware timestamp")

    if entry.vial_id != active_vial.id:
        raise AssertionError("Expected the entry stamped with the active vial")


def test_reconcile_all_skips_broken_documents(
    engine: ReconciliationEngine, store: InMemoryStore, active_vial: Vial
) -> None:
    """Test that one unreadable peptide does not stop reconciliation."""
    store.collections["peptides"]["broken"] = {"id": "broken"}

    reports = engine.reconcile_all()

    if [r.peptide_id for r in reports] != [PEPTIDE_ID]:
        raise AssertionError(f"Expected only {PEPTIDE_ID} reconciled, got {reports}")


@pytest.mark.parametrize("amount", [float("nan"), float("inf")])
def test_non_finite_dose_is_rejected(
    engine: ReconciliationEngine, active_vial: Vial, amount: float
) -> None:
    """Test that NaN and infinite doses are rejected without a write."""
    before = engine.store.load_peptide(PEPTIDE_ID)

    with pytest.raises(ValidationError):
        engine.log_dose(PEPTIDE_ID, DoseInput(amount=amount))

    after = engine.store.load_peptide(PEPTIDE_ID)
    if after.version != before.version or after.dose_logs:
        raise AssertionError("Expected the rejected dose to leave the peptide untouched")
