"""Shared fixtures for ledger tests."""

import pytest

from peptide_ledger.domain.peptide import Peptide, Vial
from peptide_ledger.infrastructure.persistence.memory import InMemoryStore
from peptide_ledger.services.reconciliation import ReconciliationEngine
from peptide_ledger.utils.parameters import LedgerConfig

PEPTIDE_ID = "bpc-157"


@pytest.fixture
def ledger_config() -> LedgerConfig:
    return LedgerConfig(timezone="UTC")


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def engine(store: InMemoryStore, ledger_config: LedgerConfig) -> ReconciliationEngine:
    return ReconciliationEngine(store, ledger_config)


@pytest.fixture
def peptide(engine: ReconciliationEngine) -> Peptide:
    """BPC-157 at 300 mcg per dose with two unopened vials in stock."""
    return engine.register_peptide(
        Peptide(id=PEPTIDE_ID, name="BPC-157", dosage_unit="mcg", typical_dose_amount=300.0),
        num_vials=2,
    )


@pytest.fixture
def active_vial(engine: ReconciliationEngine, peptide: Peptide) -> Vial:
    """Active 30-dose vial taken from stock."""
    return engine.add_vial(peptide.id, initial_units=30)
