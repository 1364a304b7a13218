"""
Serialization boundary between domain models and stored documents.

Peptide documents use camelCase keys, inventory mirror documents use
snake_case keys. The key sets are fixed: decoding never probes alternative
casings, and a document that carries a known key under the wrong casing is
rejected.
"""

import logging
from datetime import datetime
from typing import Any

from dateutil import parser
from pydantic import ValidationError as PydanticValidationError

from peptide_ledger.domain.inventory import InventoryMirrorRecord
from peptide_ledger.domain.peptide import (
    DoseLogEntry,
    Peptide,
    PeptideSchedule,
    Vial,
    VialCompletion,
    VialStatus,
)
from peptide_ledger.utils.exceptions import SerializationError
from peptide_ledger.utils.timezone_utils import make_timezone_aware

logger = logging.getLogger(__name__)

PEPTIDE_KEYS = (
    "id",
    "name",
    "dosageUnit",
    "typicalDosageUnits",
    "schedule",
    "startDate",
    "notes",
    "vials",
    "doseLogs",
    "version",
)
SCHEDULE_KEYS = ("frequency", "daysOfWeek", "times")
VIAL_KEYS = (
    "id",
    "name",
    "initialAmountUnits",
    "remainingAmountUnits",
    "status",
    "isActive",
    "isCurrent",
    "completion",
    "reconstitutionBacWaterMl",
    "totalPeptideInVialMcg",
    "typicalDoseMcgForCalc",
    "reconstitutionDate",
    "expirationDate",
    "dateAdded",
    "notes",
    "discardedAt",
    "discardReason",
)
COMPLETION_KEYS = ("type", "remainingDoses", "wastedDoses", "reason", "completedAt")
DOSE_LOG_KEYS = (
    "id",
    "timestamp",
    "timeOfDay",
    "dosage",
    "unit",
    "vialId",
    "volumeDrawnMl",
    "notes",
)
MIRROR_KEYS = (
    "id",
    "name",
    "num_vials",
    "used_doses",
    "remaining_doses",
    "active_vial_status",
    "active_vial_reconstitution_date",
    "active_vial_expiry_date",
    "typical_dose_mcg",
    "low_stock_threshold",
    "updated_at",
)


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: Any, context: str) -> datetime | None:
    if value is None:
        return None
    try:
        dt = parser.isoparse(value)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"{context}: invalid timestamp {value!r}") from e
    return make_timezone_aware(dt, "UTC", assume_local=True)


def _fold(key: str) -> str:
    return key.lower().replace("_", "")


def _value(member: Any) -> Any:
    """Plain value of an enum member; other values pass through."""
    return getattr(member, "value", member)


def _check_keys(doc: Any, expected: tuple[str, ...], context: str) -> None:
    """
    Validate the key casing of a stored document.

    Raises:
        SerializationError: If doc is not a mapping or carries a known key
            under a different casing.
    """
    if not isinstance(doc, dict):
        raise SerializationError(f"{context}: expected an object, got {type(doc).__name__}")

    by_folded = {_fold(key): key for key in expected}
    for key in doc:
        if key in expected:
            continue
        canonical = by_folded.get(_fold(key))
        if canonical is not None:
            raise SerializationError(
                f"{context}: found key {key!r}, expected {canonical!r}"
            )
        logger.debug(f"{context}: ignoring unknown key {key!r}")


def _require(doc: dict[str, Any], key: str, context: str) -> Any:
    if key not in doc:
        raise SerializationError(f"{context}: missing required key {key!r}")
    return doc[key]


def schedule_to_document(schedule: PeptideSchedule) -> dict[str, Any]:
    return {
        "frequency": _value(schedule.frequency),
        "daysOfWeek": list(schedule.days_of_week),
        "times": [_value(t) for t in schedule.times],
    }


def schedule_from_document(doc: Any, context: str) -> PeptideSchedule:
    _check_keys(doc, SCHEDULE_KEYS, context)
    return PeptideSchedule(
        frequency=_require(doc, "frequency", context),
        days_of_week=doc.get("daysOfWeek") or [],
        times=_require(doc, "times", context),
    )


def completion_to_document(completion: VialCompletion) -> dict[str, Any]:
    return {
        "type": _value(completion.type),
        "remainingDoses": completion.remaining_doses,
        "wastedDoses": completion.wasted_doses,
        "reason": completion.reason,
        "completedAt": _format_datetime(completion.completed_at),
    }


def completion_from_document(doc: Any, context: str) -> VialCompletion:
    _check_keys(doc, COMPLETION_KEYS, context)
    return VialCompletion(
        type=_require(doc, "type", context),
        remaining_doses=_require(doc, "remainingDoses", context),
        wasted_doses=_require(doc, "wastedDoses", context),
        reason=doc.get("reason"),
        completed_at=_parse_datetime(_require(doc, "completedAt", context), context),
    )


def vial_to_document(vial: Vial) -> dict[str, Any]:
    """Encode a vial. isActive and isCurrent both mirror the active status."""
    return {
        "id": vial.id,
        "name": vial.name,
        "initialAmountUnits": vial.initial_amount_units,
        "remainingAmountUnits": vial.remaining_amount_units,
        "status": _value(vial.status),
        "isActive": vial.is_active,
        "isCurrent": vial.is_active,
        "completion": completion_to_document(vial.completion) if vial.completion else None,
        "reconstitutionBacWaterMl": vial.reconstitution_bac_water_ml,
        "totalPeptideInVialMcg": vial.total_peptide_in_vial_mcg,
        "typicalDoseMcgForCalc": vial.typical_dose_mcg_for_calc,
        "reconstitutionDate": _format_datetime(vial.reconstitution_date),
        "expirationDate": _format_datetime(vial.expiration_date),
        "dateAdded": _format_datetime(vial.date_added),
        "notes": vial.notes,
        "discardedAt": _format_datetime(vial.discarded_at),
        "discardReason": vial.discard_reason,
    }


def vial_from_document(doc: Any, context: str) -> Vial:
    """
    Decode a vial.

    Raises:
        SerializationError: If isActive/isCurrent disagree with the status.
    """
    _check_keys(doc, VIAL_KEYS, context)
    status = _require(doc, "status", context)
    is_active = status == VialStatus.ACTIVE
    for flag in ("isActive", "isCurrent"):
        if flag in doc and bool(doc[flag]) != is_active:
            raise SerializationError(
                f"{context}: {flag}={doc[flag]!r} contradicts status {status!r}"
            )

    completion = doc.get("completion")
    return Vial(
        id=_require(doc, "id", context),
        name=doc.get("name"),
        initial_amount_units=_require(doc, "initialAmountUnits", context),
        remaining_amount_units=_require(doc, "remainingAmountUnits", context),
        status=status,
        completion=(
            completion_from_document(completion, f"{context}.completion")
            if completion is not None
            else None
        ),
        reconstitution_bac_water_ml=doc.get("reconstitutionBacWaterMl"),
        total_peptide_in_vial_mcg=doc.get("totalPeptideInVialMcg"),
        typical_dose_mcg_for_calc=doc.get("typicalDoseMcgForCalc"),
        reconstitution_date=_parse_datetime(doc.get("reconstitutionDate"), context),
        expiration_date=_parse_datetime(doc.get("expirationDate"), context),
        date_added=_parse_datetime(_require(doc, "dateAdded", context), context),
        notes=doc.get("notes"),
        discarded_at=_parse_datetime(doc.get("discardedAt"), context),
        discard_reason=doc.get("discardReason"),
    )


def dose_log_to_document(entry: DoseLogEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "timestamp": _format_datetime(entry.timestamp),
        "timeOfDay": _value(entry.time_of_day),
        "dosage": entry.dosage,
        "unit": entry.unit,
        "vialId": entry.vial_id,
        "volumeDrawnMl": entry.volume_drawn_ml,
        "notes": entry.note,
    }


def dose_log_from_document(doc: Any, context: str) -> DoseLogEntry:
    _check_keys(doc, DOSE_LOG_KEYS, context)
    return DoseLogEntry(
        id=_require(doc, "id", context),
        timestamp=_parse_datetime(_require(doc, "timestamp", context), context),
        time_of_day=_require(doc, "timeOfDay", context),
        dosage=_require(doc, "dosage", context),
        unit=_require(doc, "unit", context),
        vial_id=_require(doc, "vialId", context),
        volume_drawn_ml=doc.get("volumeDrawnMl"),
        note=doc.get("notes"),
    )


def peptide_to_document(peptide: Peptide) -> dict[str, Any]:
    """
    Encode a peptide, its vials and its dose log as one document.

    Args:
        peptide: Peptide to encode.

    Returns:
        JSON-compatible dictionary with camelCase keys.
    """
    return {
        "id": peptide.id,
        "name": peptide.name,
        "dosageUnit": peptide.dosage_unit,
        "typicalDosageUnits": peptide.typical_dose_amount,
        "schedule": schedule_to_document(peptide.schedule),
        "startDate": _format_datetime(peptide.start_date),
        "notes": peptide.notes,
        "vials": [vial_to_document(v) for v in peptide.vials],
        "doseLogs": [dose_log_to_document(e) for e in peptide.dose_logs],
        "version": peptide.version,
    }


def peptide_from_document(doc: Any) -> Peptide:
    """
    Decode a peptide document.

    Args:
        doc: Stored document.

    Returns:
        Peptide model.

    Raises:
        SerializationError: If the document violates the mapping contract.
    """
    context = f"peptides/{doc.get('id', '?') if isinstance(doc, dict) else '?'}"
    _check_keys(doc, PEPTIDE_KEYS, context)

    try:
        return Peptide(
            id=_require(doc, "id", context),
            name=_require(doc, "name", context),
            dosage_unit=_require(doc, "dosageUnit", context),
            typical_dose_amount=doc.get("typicalDosageUnits"),
            schedule=schedule_from_document(
                _require(doc, "schedule", context), f"{context}.schedule"
            ),
            start_date=_parse_datetime(doc.get("startDate"), context),
            notes=doc.get("notes"),
            vials=[
                vial_from_document(v, f"{context}.vials[{i}]")
                for i, v in enumerate(_require(doc, "vials", context))
            ],
            dose_logs=[
                dose_log_from_document(e, f"{context}.doseLogs[{i}]")
                for i, e in enumerate(_require(doc, "doseLogs", context))
            ],
            version=_require(doc, "version", context),
        )
    except PydanticValidationError as e:
        raise SerializationError(f"{context}: {e}") from e


def mirror_to_document(record: InventoryMirrorRecord) -> dict[str, Any]:
    """Encode an inventory mirror record with snake_case keys."""
    return {
        "id": record.id,
        "name": record.name,
        "num_vials": record.num_vials,
        "used_doses": record.used_doses,
        "remaining_doses": record.remaining_doses,
        "active_vial_status": _value(record.active_vial_status),
        "active_vial_reconstitution_date": _format_datetime(
            record.active_vial_reconstitution_date
        ),
        "active_vial_expiry_date": _format_datetime(record.active_vial_expiry_date),
        "typical_dose_mcg": record.typical_dose_mcg,
        "low_stock_threshold": record.low_stock_threshold,
        "updated_at": _format_datetime(record.updated_at),
    }


def mirror_from_document(doc: Any) -> InventoryMirrorRecord:
    """
    Decode an inventory mirror document.

    Raises:
        SerializationError: If the document violates the mapping contract.
    """
    context = f"inventory_peptides/{doc.get('id', '?') if isinstance(doc, dict) else '?'}"
    _check_keys(doc, MIRROR_KEYS, context)

    try:
        return InventoryMirrorRecord(
            id=_require(doc, "id", context),
            name=_require(doc, "name", context),
            num_vials=_require(doc, "num_vials", context),
            used_doses=_require(doc, "used_doses", context),
            remaining_doses=_require(doc, "remaining_doses", context),
            active_vial_status=_require(doc, "active_vial_status", context),
            active_vial_reconstitution_date=_parse_datetime(
                doc.get("active_vial_reconstitution_date"), context
            ),
            active_vial_expiry_date=_parse_datetime(doc.get("active_vial_expiry_date"), context),
            typical_dose_mcg=doc.get("typical_dose_mcg"),
            low_stock_threshold=doc.get("low_stock_threshold"),
            updated_at=_parse_datetime(_require(doc, "updated_at", context), context),
        )
    except PydanticValidationError as e:
        raise SerializationError(f"{context}: {e}") from e
