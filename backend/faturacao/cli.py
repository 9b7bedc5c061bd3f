# Overview: Flask CLI command groups for bootstrap, series setup and reconciliation.

# backend/faturacao/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to faturacao (PowerShell: $env:FLASK_APP="faturacao").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Series setup:
# - python -m flask series create --code A --year 2024 --name "Série Geral" [--manual]
#   Create a numbering series (counters start at 0 for every type).
# - python -m flask series list [--all]
#   List series with their current counters.
# - python -m flask series bootstrap 1 legacy_numbers.csv
#   Fast-forward counters from numbers issued by another system.
#   CSV columns: document_type,number (document_type may be blank).
#
# Reconciliation:
# - python -m flask documents gaps
#   List certified documents whose side effects failed to post.
# - python -m flask documents retry-effects <document_id>
#   Re-attempt the postings of a FAILED document.

import csv

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import FiscalError
from .services import posting_service, sequence_service, series_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables. Existing data is left untouched."""
    from . import models  # noqa: F401

    db.create_all()
    click.echo("PASS Database schema ready.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, certified documents included!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask series create' to add a series.")


# =============================================================================
# SERIES
# =============================================================================

@click.group('series')
def series_group():
    """Numbering series management."""


@series_group.command('create')
@click.option('--code', required=True, help='Short series code, printed in every number (e.g. A)')
@click.option('--year', 'fiscal_year', required=True, type=int, help='Fiscal year')
@click.option('--name', default=None, help='Display name')
@click.option('--manual', is_flag=True, help='Manual series: paper numbers, no chronology or hash')
@click.option('--pos', is_flag=True, help='Point-of-sale series')
@with_appcontext
def create_series_cmd(code, fiscal_year, name, manual, pos):
    """Create a numbering series."""
    if manual and pos:
        raise click.UsageError("--manual and --pos are mutually exclusive")
    kind = "MANUAL" if manual else ("POS" if pos else "NORMAL")
    try:
        series = series_service.create_series(code=code, fiscal_year=fiscal_year, name=name, kind=kind)
    except FiscalError as exc:
        raise click.ClickException(exc.message)
    click.echo(f"PASS Created series {series.code} {series.fiscal_year} (ID: {series.id}, kind: {series.kind})")


@series_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive series')
@with_appcontext
def list_series_cmd(include_inactive):
    """List series and their counters."""
    rows = series_service.list_series(include_inactive=include_inactive)
    if not rows:
        click.echo("No series found.")
        return

    click.echo(f"{'ID':<5} {'Code':<8} {'Year':<6} {'Kind':<8} {'Active':<7} Counters")
    click.echo("-" * 70)
    for series in rows:
        counters = ", ".join(
            f"{seq.document_type}/{seq.year}={seq.last_number}"
            for seq in sorted(series.sequences, key=lambda s: (s.year, s.document_type))
        ) or "-"
        active = "yes" if series.is_active else "no"
        click.echo(f"{series.id:<5} {series.code:<8} {series.fiscal_year:<6} {series.kind:<8} {active:<7} {counters}")


@series_group.command('bootstrap')
@click.argument('series_id', type=int)
@click.argument('csv_path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def bootstrap_series_cmd(series_id, csv_path):
    """Fast-forward counters from a CSV of legacy numbers (document_type,number)."""
    with open(csv_path, newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        if not reader.fieldnames or "number" not in reader.fieldnames:
            raise click.ClickException("CSV must have a 'number' column")
        records = [((row.get("document_type") or "").strip() or None, row["number"]) for row in reader]

    try:
        summary = sequence_service.bootstrap_from_numbers(series_id, records)
    except FiscalError as exc:
        raise click.ClickException(exc.message)

    click.echo(f"PASS Ingested {summary['ingested']} numbers")
    for scope, value in sorted(summary["sequences"].items()):
        click.echo(f"  {scope}: next sequence {value + 1}")
    for skipped in summary["skipped"]:
        click.echo(f"  SKIP {skipped['number']}: {skipped['reason']}")


# =============================================================================
# DOCUMENTS
# =============================================================================

@click.group('documents')
def documents_group():
    """Document reconciliation commands."""


@documents_group.command('gaps')
@with_appcontext
def list_gaps_cmd():
    """List certified documents whose side effects failed to post."""
    gaps = posting_service.list_integration_gaps()
    if not gaps:
        click.echo("PASS No integration gaps.")
        return

    for doc in gaps:
        click.echo(f"{doc.id}  {doc.number or '-':<20} {doc.effects_error or ''}")
    click.echo(f"WARN {len(gaps)} documents pending reconciliation")


@documents_group.command('retry-effects')
@click.argument('document_id')
@with_appcontext
def retry_effects_cmd(document_id):
    """Re-attempt the side effects of a FAILED document."""
    try:
        warning = posting_service.retry_effects(document_id)
    except FiscalError as exc:
        raise click.ClickException(exc.message)

    if warning:
        raise click.ClickException(warning)
    click.echo(f"PASS Side effects reconciled for {document_id}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(series_group)
    app.cli.add_command(documents_group)
