"""
Command-line interface for Peptide Ledger.

Provides commands for logging and reverting doses, managing vials, and
reconciling the dose ledger with vial counters and inventory records.
"""

import logging
from datetime import datetime
from typing import NoReturn

import typer

from peptide_ledger.domain.peptide import DoseInput, Peptide, TimeOfDay, VialCompletionType
from peptide_ledger.infrastructure.persistence.json_store import JSONFileStore
from peptide_ledger.services.reconciliation import ReconciliationEngine
from peptide_ledger.services.reporting import (
    calculate_draw_volume,
    format_dose_display,
    wastage_stats,
)
from peptide_ledger.utils.exceptions import PeptideLedgerError
from peptide_ledger.utils.logging_config import setup_logging
from peptide_ledger.utils.parameters import ParameterLoader
from peptide_ledger.utils.timezone_utils import parse_datetime

app = typer.Typer(help="Peptide Ledger - Dose ledger and vial inventory reconciliation")

logger = logging.getLogger(__name__)

CONFIG_OPTION = typer.Option("config/config.yaml", help="Path to configuration file")


def init_config(config_path: str = "config/config.yaml") -> ParameterLoader:
    """
    Initialize configuration and logging.

    Args:
        config_path: Path to configuration file.

    Returns:
        Parameter loader instance.
    """
    param_loader = ParameterLoader(config_path)
    setup_logging(param_loader.get_logging_config(), "peptide_ledger")
    return param_loader


def build_engine(param_loader: ParameterLoader) -> ReconciliationEngine:
    """Create an engine over the configured file store."""
    store = JSONFileStore(param_loader.get_storage_config())
    return ReconciliationEngine(store, param_loader.get_ledger_config())


def _fail(action: str, error: PeptideLedgerError) -> NoReturn:
    logger.error(f"{action} failed: {error}")
    typer.echo(f"Error: {error}", err=True)
    raise typer.Exit(code=1) from error


@app.command()
def register(
    name: str = typer.Argument(..., help="Peptide name"),
    typical_dose: float | None = typer.Option(None, help="Typical amount per dose"),
    unit: str = typer.Option("mcg", help="Dosage unit"),
    num_vials: int = typer.Option(0, help="Unopened vials in stock"),
    peptide_id: str | None = typer.Option(None, help="Explicit peptide id"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """Register a peptide and create its inventory record."""
    try:
        param_loader = init_config(config_path)
        engine = build_engine(param_loader)

        fields = {"name": name, "dosage_unit": unit, "typical_dose_amount": typical_dose}
        if peptide_id:
            fields["id"] = peptide_id
        peptide = engine.register_peptide(Peptide(**fields), num_vials=num_vials)

        typer.echo(f"Registered {peptide.name} with id {peptide.id}")

    except PeptideLedgerError as e:
        _fail("Register", e)


@app.command("add-vial")
def add_vial(
    peptide_id: str = typer.Argument(..., help="Peptide id"),
    units: int | None = typer.Option(None, help="Capacity in doses"),
    total_mcg: float | None = typer.Option(None, help="Peptide powder in the vial (mcg)"),
    bac_water_ml: float | None = typer.Option(None, help="Diluent volume (mL)"),
    reconstituted: str | None = typer.Option(None, help="Reconstitution date"),
    activate: bool = typer.Option(True, help="Make the new vial the active one"),
    from_stock: bool = typer.Option(True, help="Take the vial from unopened stock"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """Reconstitute a new vial."""
    try:
        param_loader = init_config(config_path)
        engine = build_engine(param_loader)
        timezone = param_loader.get_ledger_config().timezone

        vial = engine.add_vial(
            peptide_id,
            initial_units=units,
            total_peptide_mcg=total_mcg,
            reconstitution_date=parse_datetime(reconstituted, timezone) if reconstituted else None,
            bac_water_ml=bac_water_ml,
            activate=activate,
            from_stock=from_stock,
        )

        typer.echo(f"Added vial {vial.id} with {vial.initial_amount_units} doses ({vial.status})")

    except PeptideLedgerError as e:
        _fail("Add vial", e)


@app.command()
def log(
    peptide_id: str = typer.Argument(..., help="Peptide id"),
    amount: float = typer.Argument(..., help="Dose amount"),
    unit: str | None = typer.Option(None, help="Dose unit (defaults to the peptide's unit)"),
    time_of_day: TimeOfDay | None = typer.Option(None, help="AM or PM"),
    when: str | None = typer.Option(None, help="Dose timestamp (defaults to now)"),
    note: str | None = typer.Option(None, help="Free-text note"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """Log a dose against the active vial."""
    try:
        param_loader = init_config(config_path)
        engine = build_engine(param_loader)
        timezone = param_loader.get_ledger_config().timezone

        timestamp: datetime | None = parse_datetime(when, timezone) if when else None
        entry = engine.log_dose(
            peptide_id,
            DoseInput(
                amount=amount,
                unit=unit,
                time_of_day=time_of_day,
                timestamp=timestamp,
                note=note,
            ),
        )

        typer.echo(f"Logged dose {entry.id}: {entry.dosage}{entry.unit} from vial {entry.vial_id}")

    except PeptideLedgerError as e:
        _fail("Log dose", e)


@app.command()
def revert(
    peptide_id: str = typer.Argument(..., help="Peptide id"),
    entry_id: str = typer.Argument(..., help="Dose log entry id"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """Revert a logged dose."""
    try:
        engine = build_engine(init_config(config_path))
        peptide = engine.revert_dose(peptide_id, entry_id)

        typer.echo(f"Reverted dose {entry_id}; {len(peptide.dose_logs)} doses remain logged")

    except PeptideLedgerError as e:
        _fail("Revert dose", e)


@app.command()
def activate(
    peptide_id: str = typer.Argument(..., help="Peptide id"),
    vial_id: str = typer.Argument(..., help="Vial id"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """Make a vial the active one."""
    try:
        engine = build_engine(init_config(config_path))
        engine.activate_vial(peptide_id, vial_id)

        typer.echo(f"Vial {vial_id} is now active")

    except PeptideLedgerError as e:
        _fail("Activate vial", e)


@app.command()
def complete(
    peptide_id: str = typer.Argument(..., help="Peptide id"),
    vial_id: str = typer.Argument(..., help="Vial id"),
    completion_type: VialCompletionType = typer.Option(
        VialCompletionType.FULLY_USED, "--type", help="Completion type"
    ),
    reason: str | None = typer.Option(None, help="Details"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """Complete a vial."""
    try:
        engine = build_engine(init_config(config_path))
        vial = engine.complete_vial(peptide_id, vial_id, completion_type, reason)

        wasted = vial.completion.wasted_doses if vial.completion else 0
        typer.echo(f"Completed vial {vial.id} ({completion_type.display}); {wasted} doses wasted")

    except PeptideLedgerError as e:
        _fail("Complete vial", e)


@app.command()
def discard(
    peptide_id: str = typer.Argument(..., help="Peptide id"),
    vial_id: str = typer.Argument(..., help="Vial id"),
    reason: str = typer.Option(..., help="Why the vial is discarded"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """Discard a vial."""
    try:
        engine = build_engine(init_config(config_path))
        vial = engine.discard_vial(peptide_id, vial_id, reason)

        wasted = vial.completion.wasted_doses if vial.completion else 0
        typer.echo(f"Discarded vial {vial.id}; {wasted} doses wasted")

    except PeptideLedgerError as e:
        _fail("Discard vial", e)


@app.command()
def remaining(
    peptide_id: str = typer.Argument(..., help="Peptide id"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """Show doses left in the active vial."""
    try:
        param_loader = init_config(config_path)
        engine = build_engine(param_loader)

        doses = engine.remaining_doses(peptide_id)
        display = format_dose_display(doses, param_loader.get_ledger_config().low_stock_threshold)

        typer.echo(display.text + (" (low stock)" if display.is_low_stock else ""))

    except PeptideLedgerError as e:
        _fail("Remaining doses", e)


@app.command()
def show(
    peptide_id: str = typer.Argument(..., help="Peptide id"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """Show vials and dose log of a peptide."""
    try:
        engine = build_engine(init_config(config_path))
        peptide = engine.store.load_peptide(peptide_id)

        typer.echo(f"{peptide.name} ({peptide.id}), version {peptide.version}")
        typer.echo("Vials:")
        for vial in peptide.vials:
            line = (
                f"  - {vial.id} [{vial.status}] "
                f"{vial.remaining_amount_units}/{vial.initial_amount_units}"
            )
            if vial.typical_dose_mcg_for_calc:
                draw = calculate_draw_volume(
                    vial.typical_dose_mcg_for_calc,
                    vial.total_peptide_in_vial_mcg,
                    vial.reconstitution_bac_water_ml,
                )
                if draw:
                    line += f", draw {draw} units per dose"
            typer.echo(line)
        typer.echo("Dose log:")
        for entry in peptide.dose_logs:
            typer.echo(
                f"  - {entry.id} {entry.timestamp.isoformat()} {entry.time_of_day} "
                f"{entry.dosage}{entry.unit} (vial {entry.vial_id})"
            )

    except PeptideLedgerError as e:
        _fail("Show", e)


@app.command()
def reconcile(
    peptide_id: str | None = typer.Argument(None, help="Peptide id (all peptides if omitted)"),
    config_path: str = CONFIG_OPTION,
) -> None:
    """
    Replay dose ledgers and repair vial counters and inventory records.
    """
    try:
        engine = build_engine(init_config(config_path))

        if peptide_id:
            reports = [engine.reconcile(peptide_id)]
        else:
            reports = engine.reconcile_all()
            engine.mirror.retry_pending()

        for report in reports:
            typer.echo(
                f"{report.peptide_id}: {report.remaining_doses} doses remaining, "
                f"{len(report.drift)} drift(s)"
                + (", corrected" if report.drift_corrected else "")
                + (", inventory repaired" if report.mirror_repaired else "")
            )

    except PeptideLedgerError as e:
        _fail("Reconcile", e)


@app.command()
def stats(config_path: str = CONFIG_OPTION) -> None:
    """Summarize vial usage and waste."""
    try:
        param_loader = init_config(config_path)
        engine = build_engine(param_loader)

        peptides = [engine.store.load_peptide(pid) for pid in engine.store.list_peptide_ids()]
        summary = wastage_stats(peptides, param_loader.get_ledger_config())

        typer.echo(f"Vials finished: {summary.total_vials}")
        typer.echo(f"Doses used: {summary.total_doses_used}")
        typer.echo(f"Doses wasted: {summary.total_doses_wasted} ({summary.wastage_percentage}%)")
        typer.echo(f"Average utilization: {summary.average_vial_utilization}%")
        for completion_type, bucket in summary.waste_by_type.items():
            label = VialCompletionType(completion_type).display
            typer.echo(f"  {label}: {bucket.count} vials, {bucket.doses_wasted} doses")

    except PeptideLedgerError as e:
        _fail("Stats", e)


if __name__ == "__main__":
    app()
