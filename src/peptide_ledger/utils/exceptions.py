"""Custom exceptions for the peptide ledger."""


class PeptideLedgerError(Exception):
    """Base exception for all peptide ledger errors."""

    pass


class ConfigurationError(PeptideLedgerError):
    """Raised when there is a configuration error."""

    pass


class ValidationError(PeptideLedgerError):
    """Raised when a dose or vial input is invalid."""

    pass


class DosingConfigurationError(ValidationError):
    """Raised when a peptide's dosing configuration cannot be used for conversion."""

    pass


class NotFoundError(PeptideLedgerError):
    """Raised when a referenced record does not exist."""

    pass


class PeptideNotFoundError(NotFoundError):
    """Raised when a peptide document does not exist."""

    pass


class VialNotFoundError(NotFoundError):
    """Raised when a vial does not belong to the peptide."""

    pass


class DoseLogNotFoundError(NotFoundError):
    """Raised when a dose log entry does not exist."""

    pass


class MirrorNotFoundError(NotFoundError):
    """Raised when an inventory mirror record does not exist."""

    pass


class NoActiveVialError(PeptideLedgerError):
    """Raised when a dose is logged for a peptide without an active vial."""

    pass


class VialTerminalError(PeptideLedgerError):
    """Raised when a completed or discarded vial is mutated."""

    pass


class PersistenceError(PeptideLedgerError):
    """Raised when the backing store fails to load or save a record."""

    pass


class ConflictError(PersistenceError):
    """Raised when a save is rejected because the stored version moved on."""

    pass


class TransientStoreError(PersistenceError):
    """Raised when the backing store keeps failing after bounded retries."""

    pass


class SerializationError(PeptideLedgerError):
    """Raised when a stored document does not match the mapping contract."""

    pass
