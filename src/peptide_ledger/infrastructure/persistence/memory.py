"""In-memory persistence collaborator."""

import copy
from typing import Any

from peptide_ledger.infrastructure.persistence.base import DocumentStore


class InMemoryStore(DocumentStore):
    """
    Document store kept in process memory.

    Documents go through the same encoding as the file store, and are deep
    copied on read and write so callers never share state with the store.
    """

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, dict[str, Any]]] = {}

    def _read(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        document = self.collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    def _write(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        self.collections.setdefault(collection, {})[doc_id] = copy.deepcopy(document)

    def _list(self, collection: str) -> list[str]:
        return list(self.collections.get(collection, {}))
