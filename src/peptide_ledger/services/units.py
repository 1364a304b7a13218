"""
Unit conversion from logged dose amounts to whole vial units.

A vial unit is one typical dose. Partial overdraws always consume a whole
unit, so conversion rounds up.
"""

import logging
import math
from decimal import ROUND_CEILING, Decimal, InvalidOperation

from peptide_ledger.domain.peptide import Peptide
from peptide_ledger.utils.exceptions import DosingConfigurationError, ValidationError
from peptide_ledger.utils.parameters import LedgerConfig

logger = logging.getLogger(__name__)

# Mass units expressed in micrograms.
MASS_UNITS_MCG: dict[str, Decimal] = {
    "mcg": Decimal("1"),
    "ug": Decimal("1"),
    "µg": Decimal("1"),
    "mg": Decimal("1000"),
    "g": Decimal("1000000"),
}


def normalize_unit(unit: str) -> str:
    """Lowercase and strip a unit label."""
    return unit.strip().lower()


def _to_decimal(value: float, label: str) -> Decimal:
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"{label} is not a number: {value!r}") from e
    if not number.is_finite():
        raise ValidationError(f"{label} must be finite, got {value!r}")
    return number


def convert_amount(amount: float, from_unit: str, to_unit: str) -> Decimal:
    """
    Express an amount in another unit.

    Args:
        amount: Amount in from_unit.
        from_unit: Unit of the amount.
        to_unit: Target unit.

    Returns:
        Amount expressed in to_unit.

    Raises:
        ValidationError: If the units cannot be converted into each other.
    """
    source = normalize_unit(from_unit)
    target = normalize_unit(to_unit)
    value = _to_decimal(amount, "amount")

    if source == target:
        return value

    if source in MASS_UNITS_MCG and target in MASS_UNITS_MCG:
        return value * MASS_UNITS_MCG[source] / MASS_UNITS_MCG[target]

    raise ValidationError(f"Cannot convert {from_unit!r} to {to_unit!r}")


def units_for(
    dosage_amount: float,
    dosage_unit: str,
    typical_dose_amount: float,
    typical_dose_unit: str | None = None,
) -> int:
    """
    Convert a dose into the number of whole vial units it consumes.

    Computes ceil(dosage_amount / typical_dose_amount) after expressing the
    dosage in the typical dose's unit.

    Args:
        dosage_amount: Logged amount.
        dosage_unit: Unit of the logged amount.
        typical_dose_amount: Amount of one vial unit.
        typical_dose_unit: Unit of the typical dose. Defaults to dosage_unit.

    Returns:
        Whole units to debit or credit.

    Raises:
        ValidationError: If the dosage is not a positive finite number or units
            are incompatible.
        DosingConfigurationError: If the typical dose is not positive.
    """
    if typical_dose_amount is None or _to_decimal(typical_dose_amount, "typical dose") <= 0:
        raise DosingConfigurationError(
            f"Typical dose must be positive, got {typical_dose_amount!r}"
        )

    if _to_decimal(dosage_amount, "dosage") <= 0:
        raise ValidationError(f"Dose amount must be positive, got {dosage_amount!r}")

    amount = convert_amount(dosage_amount, dosage_unit, typical_dose_unit or dosage_unit)
    ratio = amount / _to_decimal(typical_dose_amount, "typical dose")
    return int(ratio.to_integral_value(rounding=ROUND_CEILING))


def resolve_typical_dose(peptide: Peptide, config: LedgerConfig) -> float:
    """
    Return the peptide's typical dose, falling back to the configured default.

    The fallback is a degraded configuration and is logged every time it is used.

    Raises:
        DosingConfigurationError: If the peptide's configured typical dose is not positive.
    """
    if peptide.typical_dose_amount is None:
        logger.warning(
            f"Peptide {peptide.name} ({peptide.id}) has no typical dose configured; "
            f"using default {config.default_typical_dose} {config.default_dose_unit}"
        )
        return config.default_typical_dose

    if not math.isfinite(peptide.typical_dose_amount) or peptide.typical_dose_amount <= 0:
        raise DosingConfigurationError(
            f"Peptide {peptide.name} ({peptide.id}) has a non-positive typical dose: "
            f"{peptide.typical_dose_amount}"
        )

    return peptide.typical_dose_amount


def typical_dose_unit(peptide: Peptide, config: LedgerConfig) -> str:
    """Unit of the typical dose used for conversion."""
    if peptide.typical_dose_amount is None:
        return config.default_dose_unit
    return peptide.dosage_unit


def doses_per_vial(
    total_peptide_mcg: float, typical_dose_amount: float, dose_unit: str = "mcg"
) -> int:
    """
    Number of whole typical doses a vial yields.

    Args:
        total_peptide_mcg: Peptide powder in the vial, in micrograms.
        typical_dose_amount: Amount of one dose.
        dose_unit: Unit of the dose; must be a mass unit.

    Returns:
        floor(total / dose).

    Raises:
        ValidationError: If the vial content is negative or the dose unit is not a mass unit.
        DosingConfigurationError: If the typical dose is not positive.
    """
    if typical_dose_amount is None or _to_decimal(typical_dose_amount, "typical dose") <= 0:
        raise DosingConfigurationError(
            f"Typical dose must be positive, got {typical_dose_amount!r}"
        )

    total = _to_decimal(total_peptide_mcg, "vial content")
    if total < 0:
        raise ValidationError(f"Vial content cannot be negative, got {total_peptide_mcg!r}")

    dose_mcg = convert_amount(typical_dose_amount, dose_unit, "mcg")
    return int(total // dose_mcg)


class PeptideDoseConverter:
    """
    Converts doses of one peptide into vial units.

    Resolves the peptide's dosing configuration once per operation.
    """

    def __init__(self, peptide: Peptide, config: LedgerConfig) -> None:
        self.typical_dose = resolve_typical_dose(peptide, config)
        self.typical_unit = typical_dose_unit(peptide, config)
        self.default_unit = peptide.dosage_unit

    def units(self, amount: float, unit: str | None = None) -> int:
        """Whole vial units consumed by a dose of this peptide."""
        return units_for(amount, unit or self.default_unit, self.typical_dose, self.typical_unit)
