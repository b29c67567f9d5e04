"""CLI entry point for vmigrate."""

from __future__ import annotations

import sys
from pathlib import Path

import click
from pydantic import ValidationError as ConfigError
from rich.console import Console
from rich.table import Table

from vmigrate import __version__
from vmigrate.config import AppConfig, RunConfig, default_log_path

console = Console()

STATUS_STYLES = {
    "Failed": "red",
    "Deregistered": "green",
    "Disconnected": "green",
    "Tagged": "green",
    "Started": "green",
}


def load_config(config_path: str | None, **overrides) -> AppConfig:
    """Load configuration from file or environment, applying CLI overrides."""
    try:
        if config_path:
            return AppConfig.from_yaml(config_path, **overrides)
        for default in ["vmigrate.yaml", "migration.yaml"]:
            if Path(default).exists():
                return AppConfig.from_yaml(default, **overrides)
        return AppConfig.from_env_and_args(**overrides)
    except (ConfigError, OSError) as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        console.print("Provide a --config file, set VMIGRATE_* environment variables, or pass the options.")
        sys.exit(1)


def prompt_credentials(config: AppConfig) -> AppConfig:
    """Ask for any username/password not supplied by file or environment."""
    labels = {
        "source_vcenter": "Source vCenter",
        "target_vcenter": "Target vCenter",
        "target_ontap": "Target ONTAP cluster",
    }
    updates = {}
    for key, endpoint in config.endpoints().items():
        if endpoint.has_credentials:
            continue
        label = f"{labels[key]} ({endpoint.host})"
        username = endpoint.username or click.prompt(f"{label} username")
        password = click.prompt(f"{label} password", hide_input=True)
        updates[key] = endpoint.with_credentials(username, password)
    return config.model_copy(update=updates) if updates else config


def _endpoint_overrides(source_vcenter, target_vcenter, target_ontap, insecure) -> dict:
    overrides = {}
    for key, host in (("source_vcenter", source_vcenter),
                      ("target_vcenter", target_vcenter),
                      ("target_ontap", target_ontap)):
        entry = {}
        if host:
            entry["host"] = host
        if insecure:
            entry["insecure"] = True
        if entry:
            overrides[key] = entry
    return overrides


@click.group()
@click.version_option(version=__version__, prog_name="vmigrate")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]), default="INFO")
def main(log_level: str):
    """Move VMware VMs between vSphere/ONTAP environment pairs.

    Replicated datastores are cut over with SnapMirror, mounted on the
    target cluster, and the VMs are registered and started there before
    the source copies are disconnected and unregistered.
    """
    from vmigrate.utils.logging import set_log_level

    set_log_level(log_level)


@main.command()
@click.option("--batch", "batch_path", required=True, type=click.Path(dir_okay=False),
              help="CSV (VMName column) or YAML list of VMs to migrate")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Configuration file")
@click.option("--source-vcenter", help="Source vCenter hostname")
@click.option("--target-vcenter", help="Target vCenter hostname")
@click.option("--target-ontap", help="Target ONTAP cluster management hostname")
@click.option("--target-svm", help="Target SVM holding the replicated volumes")
@click.option("--target-cluster", help="Target vSphere cluster")
@click.option("--backup-tag", help="Backup classification tag to assign")
@click.option("--log-path", type=click.Path(dir_okay=False), help="Run log (default: vmigrate-<timestamp>.log)")
@click.option("--insecure", is_flag=True, default=False, help="Skip SSL verification on all endpoints")
@click.option("--simulate", "--what-if", "simulate", is_flag=True, default=False,
              help="Read and validate everything, change nothing")
@click.option("--yes", "assume_yes", is_flag=True, default=False, help="Answer yes to every confirmation")
def migrate(batch_path, config_path, source_vcenter, target_vcenter, target_ontap, target_svm,
            target_cluster, backup_tag, log_path, insecure, simulate, assume_yes):
    """Migrate a batch of VMs from the source to the target environment."""
    overrides = _endpoint_overrides(source_vcenter, target_vcenter, target_ontap, insecure)
    overrides.update({"target_svm": target_svm, "target_cluster": target_cluster})
    if backup_tag:
        overrides["settings"] = {"backup_tag": backup_tag}

    app = prompt_credentials(load_config(config_path, **overrides))
    run_config = RunConfig(
        app=app,
        batch_path=Path(batch_path),
        log_path=Path(log_path) if log_path else default_log_path(),
        simulate=simulate,
    )

    from vmigrate.pipeline.confirm import AutoConfirm, ClickConfirmation
    from vmigrate.pipeline.sequencer import MigrationSequencer

    if simulate:
        console.print("[yellow]SIMULATION — No changes will be made[/yellow]")

    confirmation = AutoConfirm(True) if assume_yes else ClickConfirmation()
    summary = MigrationSequencer(run_config, confirmation).run()

    _print_summary(summary)
    sys.exit(summary.exit_code)


@main.command()
@click.option("--batch", "batch_path", required=True, type=click.Path(dir_okay=False),
              help="CSV (VMName column) or YAML list of VMs")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Configuration file")
@click.option("--source-vcenter", help="Source vCenter hostname")
@click.option("--target-ontap", help="Target ONTAP cluster management hostname")
@click.option("--insecure", is_flag=True, default=False, help="Skip SSL verification")
def discover(batch_path, config_path, source_vcenter, target_ontap, insecure):
    """Show each VM's datastore and the SnapMirror relationships it maps to (read-only)."""
    from vmigrate.errors import MigrationError
    from vmigrate.ontap.client import OntapClient
    from vmigrate.pipeline.inventory import load_batch
    from vmigrate.pipeline.matching import match_relationships
    from vmigrate.vmware.client import VSphereClient
    from vmigrate.vmware.inventory import VMInventory

    overrides = _endpoint_overrides(source_vcenter, None, target_ontap, insecure)
    config = load_config(config_path, **overrides)
    try:
        units = load_batch(batch_path)
    except MigrationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    src, ontap = config.source_vcenter, config.target_ontap
    src_user = src.username or click.prompt("Source vCenter username")
    src_pw = src.secret() or click.prompt("Source vCenter password", hide_input=True)
    ontap_user = ontap.username or click.prompt("ONTAP username")
    ontap_pw = ontap.secret() or click.prompt("ONTAP password", hide_input=True)

    client = VSphereClient("source vCenter")
    storage = OntapClient()
    try:
        with console.status("[bold green]Connecting..."):
            client.connect(src.host, src_user, src_pw, port=src.port, insecure=src.insecure)
            storage.connect(ontap.host, ontap_user, ontap_pw, insecure=ontap.insecure)

        with console.status("[bold green]Collecting VM and replication data..."):
            inventory = VMInventory(client)
            relationships = storage.list_relationships()
            rows = []
            for unit in units:
                try:
                    info = inventory.get_vm_info(unit.name)
                except MigrationError as e:
                    rows.append((unit.name, "-", "-", f"[red]{e}[/red]"))
                    continue
                matches = match_relationships(info.primary_datastore, relationships)
                rows.append((
                    unit.name,
                    info.power_state,
                    info.primary_datastore,
                    "\n".join(str(r) for r in matches) or "[yellow]none[/yellow]",
                ))
    except MigrationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    finally:
        client.disconnect()
        storage.disconnect()

    table = Table(title=f"Migration discovery — {src.host}")
    table.add_column("VM", style="cyan", no_wrap=True)
    table.add_column("Power")
    table.add_column("Datastore", style="magenta")
    table.add_column("SnapMirror relationships")
    for row in rows:
        table.add_row(*row)
    console.print(table)


@main.command()
@click.argument("report_path", type=click.Path(exists=True, dir_okay=False))
def report(report_path: str):
    """Show a saved run report (the .json written beside the run log)."""
    from vmigrate.pipeline.summary import load_report

    summary = load_report(report_path)
    if summary is None:
        console.print(f"[red]Cannot read run report '{report_path}'[/red]")
        sys.exit(1)
    _print_summary(summary)


def _print_summary(summary) -> None:
    table = Table(title="Migration summary" + (" (simulation)" if summary.simulate else ""))
    table.add_column("VM", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Source datastore")
    table.add_column("Target volume")
    table.add_column("Error", style="red")
    for unit in summary.units:
        style = STATUS_STYLES.get(unit["status"], "yellow")
        table.add_row(
            unit["name"],
            f"[{style}]{unit['status']}[/{style}]",
            unit["source_location"] or "-",
            unit["target_location"] or "-",
            unit["error"] or "",
        )
    console.print(table)

    console.print(f"  VMs: {summary.total_units}   Errors: {summary.error_count}   "
                  f"Warnings: {summary.warning_count}")
    console.print(f"  Log: {summary.log_path}")
    if summary.aborted_at:
        console.print(f"  [red]Run aborted at step '{summary.aborted_at}'[/red]")

    verdict = summary.verdict.value
    if summary.aborted_at:
        console.print("\n[bold red]❌ Migration failed[/bold red]")
    elif verdict == "all-clear":
        console.print("\n[bold green]✅ All VMs processed without errors[/bold green]")
    elif verdict == "partial":
        console.print("\n[bold yellow]⚠️ Partial success — some VMs need attention[/bold yellow]")
    else:
        console.print("\n[bold red]❌ Migration failed[/bold red]")


if __name__ == "__main__":
    main()
