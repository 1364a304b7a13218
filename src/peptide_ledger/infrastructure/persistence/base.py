"""
Persistence collaborator contract.

The reconciliation engine only talks to the backing store through this
interface. Implementations own the document encoding and retry policy.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from peptide_ledger.domain.inventory import InventoryMirrorRecord
from peptide_ledger.domain.peptide import Peptide
from peptide_ledger.infrastructure.persistence.mapping import (
    mirror_from_document,
    mirror_to_document,
    peptide_from_document,
    peptide_to_document,
)
from peptide_ledger.utils.exceptions import (
    ConflictError,
    MirrorNotFoundError,
    PeptideNotFoundError,
)

logger = logging.getLogger(__name__)

PEPTIDES = "peptides"
INVENTORY_PEPTIDES = "inventory_peptides"


class PersistenceCollaborator(ABC):
    """Load and save peptide documents and their inventory mirrors."""

    @abstractmethod
    def load_peptide(self, peptide_id: str) -> Peptide:
        """
        Load a peptide document.

        Raises:
            PeptideNotFoundError: If the peptide does not exist.
            PersistenceError: If the store fails.
        """

    @abstractmethod
    def save_peptide(
        self, peptide_id: str, peptide: Peptide, expected_version: int | None = None
    ) -> Peptide:
        """
        Save a peptide document, vials and dose log included, in one write.

        Args:
            peptide_id: Document id.
            peptide: Peptide to save.
            expected_version: Version the caller loaded. Defaults to peptide.version.

        Returns:
            The saved peptide with its new version.

        Raises:
            ConflictError: If the stored version differs from expected_version.
            TransientStoreError: If the store keeps failing.
        """

    @abstractmethod
    def load_inventory_mirror(self, peptide_id: str) -> InventoryMirrorRecord:
        """
        Load an inventory mirror record.

        Raises:
            MirrorNotFoundError: If no mirror exists for the peptide.
        """

    @abstractmethod
    def save_inventory_mirror(self, peptide_id: str, record: InventoryMirrorRecord) -> None:
        """
        Save an inventory mirror record.

        Raises:
            TransientStoreError: If the store keeps failing.
        """

    @abstractmethod
    def list_peptide_ids(self) -> list[str]:
        """Ids of all stored peptides."""


class DocumentStore(PersistenceCollaborator):
    """
    Collaborator over a key/document backend.

    Subclasses provide raw document reads and writes; this class owns the
    encoding and the optimistic version check.
    """

    @abstractmethod
    def _read(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Return the stored document, or None if absent."""

    @abstractmethod
    def _write(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        """Replace the stored document."""

    @abstractmethod
    def _list(self, collection: str) -> list[str]:
        """Ids of the documents in a collection."""

    def load_peptide(self, peptide_id: str) -> Peptide:
        document = self._read(PEPTIDES, peptide_id)
        if document is None:
            raise PeptideNotFoundError(f"Peptide {peptide_id} not found")
        return peptide_from_document(document)

    def save_peptide(
        self, peptide_id: str, peptide: Peptide, expected_version: int | None = None
    ) -> Peptide:
        expected = peptide.version if expected_version is None else expected_version

        current = self._read(PEPTIDES, peptide_id)
        current_version = current.get("version", 0) if current is not None else 0
        if current_version != expected:
            raise ConflictError(
                f"Peptide {peptide_id} is at version {current_version}, expected {expected}"
            )

        saved = peptide.model_copy(update={"version": expected + 1})
        self._write(PEPTIDES, peptide_id, peptide_to_document(saved))
        logger.debug(f"Saved peptide {peptide_id} at version {saved.version}")
        return saved

    def load_inventory_mirror(self, peptide_id: str) -> InventoryMirrorRecord:
        document = self._read(INVENTORY_PEPTIDES, peptide_id)
        if document is None:
            raise MirrorNotFoundError(f"Inventory mirror {peptide_id} not found")
        return mirror_from_document(document)

    def save_inventory_mirror(self, peptide_id: str, record: InventoryMirrorRecord) -> None:
        self._write(INVENTORY_PEPTIDES, peptide_id, mirror_to_document(record))
        logger.debug(f"Saved inventory mirror {peptide_id}")

    def list_peptide_ids(self) -> list[str]:
        return sorted(self._list(PEPTIDES))
