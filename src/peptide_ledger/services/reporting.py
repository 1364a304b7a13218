"""
Usage reporting for list views and vial history.
"""

import logging
from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, Field

from peptide_ledger.domain.peptide import Peptide, VialCompletionType
from peptide_ledger.services import dose_ledger
from peptide_ledger.services.units import PeptideDoseConverter
from peptide_ledger.utils.parameters import LedgerConfig

logger = logging.getLogger(__name__)

INSULIN_UNITS_PER_ML = 100


class DoseDisplay(BaseModel):
    """Remaining-dose label for list views."""

    text: str
    is_low_stock: bool


class WasteByType(BaseModel):
    """Wastage of one completion type."""

    count: int = 0
    doses_wasted: int = 0


class VialWastageStats(BaseModel):
    """Wastage summary over completed and discarded vials."""

    total_vials: int = 0
    total_doses_used: int = 0
    total_doses_wasted: int = 0
    wastage_percentage: float = 0.0
    average_vial_utilization: float = 0.0
    waste_by_type: dict[str, WasteByType] = Field(default_factory=dict)


def format_dose_display(remaining: int, low_stock_threshold: int = 3) -> DoseDisplay:
    """
    Label the remaining doses of a vial.

    Args:
        remaining: Doses left.
        low_stock_threshold: Counts below this are flagged as low stock.

    Returns:
        Display text and low stock flag.
    """
    if remaining <= 0:
        return DoseDisplay(text="No doses remaining", is_low_stock=True)
    if remaining == 1:
        return DoseDisplay(text="1 dose left", is_low_stock=True)
    return DoseDisplay(text=f"{remaining} doses left", is_low_stock=remaining < low_stock_threshold)


def calculate_draw_volume(
    dose_mcg: float, total_peptide_mcg: float | None, bac_water_ml: float | None
) -> int:
    """
    Volume to draw for a dose, in insulin syringe units (100 units = 1 mL).

    Returns 0 when the vial's reconstitution data is missing.
    """
    if not total_peptide_mcg or not bac_water_ml:
        return 0

    concentration = Decimal(str(total_peptide_mcg)) / Decimal(str(bac_water_ml))
    volume_ml = Decimal(str(dose_mcg)) / concentration
    units = volume_ml * INSULIN_UNITS_PER_ML
    return int(units.to_integral_value(rounding=ROUND_HALF_UP))


def wastage_stats(peptides: list[Peptide], config: LedgerConfig) -> VialWastageStats:
    """
    Summarize dose usage and waste over every terminated vial.

    Used doses come from the ledger replay; wasted doses from each vial's
    completion record.
    """
    stats = VialWastageStats()
    by_type: dict[str, WasteByType] = defaultdict(WasteByType)
    utilizations: list[float] = []

    for peptide in peptides:
        converter = PeptideDoseConverter(peptide, config)
        for vial in peptide.vials:
            if not vial.is_terminal or vial.completion is None:
                continue

            used = dose_ledger.used_units_for_vial(peptide, vial.id, converter)
            wasted = vial.completion.wasted_doses

            stats.total_vials += 1
            stats.total_doses_used += used
            stats.total_doses_wasted += wasted

            bucket = by_type[VialCompletionType(vial.completion.type).value]
            bucket.count += 1
            bucket.doses_wasted += wasted

            if vial.initial_amount_units > 0:
                utilizations.append(min(1.0, used / vial.initial_amount_units) * 100)

    total = stats.total_doses_used + stats.total_doses_wasted
    if total:
        stats.wastage_percentage = round(stats.total_doses_wasted / total * 100, 2)
    if utilizations:
        stats.average_vial_utilization = round(sum(utilizations) / len(utilizations), 2)
    stats.waste_by_type = dict(by_type)

    logger.debug(
        f"Wastage over {stats.total_vials} vials: {stats.total_doses_wasted} of {total} doses"
    )
    return stats
