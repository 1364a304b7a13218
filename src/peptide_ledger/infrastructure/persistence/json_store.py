"""
JSON file persistence collaborator.

Stores one JSON document per record under a directory selected by the
configured environment. Writes are atomic per document and transient I/O
failures are retried a bounded number of times.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, TypeVar

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from peptide_ledger.infrastructure.persistence.base import DocumentStore
from peptide_ledger.utils.exceptions import (
    SerializationError,
    TransientStoreError,
    ValidationError,
)
from peptide_ledger.utils.parameters import StorageConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JSONFileStore(DocumentStore):
    """
    Document store backed by JSON files.

    Layout: <data_dir>/<environment>/<collection>/<id>.json
    """

    def __init__(self, config: StorageConfig) -> None:
        """
        Initialize JSON file store.

        Args:
            config: Storage configuration. The environment picks the data directory.
        """
        self.config = config
        self.root = config.environment_dir()
        self.root.mkdir(parents=True, exist_ok=True)
        self._retrying = Retrying(
            stop=stop_after_attempt(config.max_retries),
            wait=wait_fixed(config.retry_wait_seconds),
            retry=retry_if_exception_type(OSError),
            reraise=True,
        )
        logger.info(f"Using {config.environment} store at {self.root}")

    def _path(self, collection: str, doc_id: str) -> Path:
        if not doc_id or "/" in doc_id or "\\" in doc_id or doc_id in (".", ".."):
            raise ValidationError(f"Invalid document id: {doc_id!r}")
        return self.root / collection / f"{doc_id}.json"

    def _call(self, description: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            return self._retrying(fn, *args)
        except OSError as e:
            raise TransientStoreError(
                f"Failed to {description} after {self.config.max_retries} attempts: {e}"
            ) from e

    def _read(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        path = self._path(collection, doc_id)
        return self._call(f"read {collection}/{doc_id}", self._read_file, path)

    def _write(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        path = self._path(collection, doc_id)
        self._call(f"write {collection}/{doc_id}", self._write_file, path, document)

    def _list(self, collection: str) -> list[str]:
        directory = self.root / collection
        if not directory.exists():
            return []
        return [p.stem for p in directory.glob("*.json")]

    def _read_file(self, path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            try:
                document: dict[str, Any] = json.load(f)
            except json.JSONDecodeError as e:
                raise SerializationError(f"Corrupted document {path}: {e}") from e
        logger.debug(f"Read {path}")
        return document

    def _write_file(self, path: Path, document: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug(f"Wrote {path}")
