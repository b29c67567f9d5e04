"""Post-migration steps: tag the new VMs, then cut the old ones loose.

Disconnect and deregister each ask for their own batch confirmation.
Declining one does not stop the other from being offered.
"""

from __future__ import annotations

from vmigrate.errors import EntityNotFoundError, OperationError
from vmigrate.pipeline.context import RunContext
from vmigrate.pipeline.models import MigrationUnit, UnitStatus
from vmigrate.vmware.tagging import ensure_tag


def tag(ctx: RunContext) -> list[MigrationUnit]:
    """Assign the backup tag to every started VM."""
    units = ctx.units_in(UnitStatus.STARTED)
    if not units:
        ctx.ledger.warning("No started VMs to tag")
        return []

    api = ctx.sessions.tags
    category, tag_name = ctx.settings.tag_category, ctx.settings.backup_tag
    label = f"{category}/{tag_name}"

    try:
        tag_id = ensure_tag(api, category, tag_name, ctx.perform)
    except OperationError as e:
        ctx.ledger.error(f"Cannot prepare tag '{label}': {e}")
        return []

    tagged = []
    for unit in units:
        try:
            ctx.perform(f"assign tag '{label}' to VM '{unit.name}'", _attach, ctx, tag_id, unit.name)
        except (OperationError, EntityNotFoundError) as e:
            ctx.ledger.error(f"Tagging of VM '{unit.name}' failed: {e}")
            continue
        unit.advance(UnitStatus.TAGGED)
        tagged.append(unit)

    ctx.ledger.success(f"Tagged {len(tagged)} of {len(units)} VM(s) with '{label}'")
    return tagged


def _attach(ctx: RunContext, tag_id: str, vm_name: str) -> None:
    moref = ctx.sessions.target.get_vm_info(vm_name).moref
    ctx.sessions.tags.attach(tag_id, moref)


def disconnect(ctx: RunContext) -> list[MigrationUnit]:
    """Disconnect every network adapter of the source copies."""
    units = ctx.units_reached(UnitStatus.STARTED)
    if not units:
        ctx.ledger.warning("No migrated VMs whose source copy needs disconnecting")
        return []

    if not ctx.gate(f"Disconnect all network adapters of {len(units)} source VM(s)?"):
        ctx.ledger.warning("Source network disconnect declined by operator; source VMs keep their connectivity")
        return []

    source = ctx.sessions.source
    done = []
    for unit in units:
        try:
            nics = source.get_vm_info(unit.name).nics
            for nic in nics:
                ctx.perform(
                    f"disconnect '{nic.label}' of source VM '{unit.name}'",
                    source.disconnect_adapter, unit.name, nic.key,
                )
        except (OperationError, EntityNotFoundError) as e:
            ctx.ledger.error(f"Disconnect of source VM '{unit.name}' failed: {e}")
            continue
        if not nics:
            ctx.ledger.info(f"Source VM '{unit.name}' has no network adapters")
        unit.advance(UnitStatus.DISCONNECTED)
        done.append(unit)

    ctx.ledger.success(f"Disconnected {len(done)} source VM(s)")
    return done


def deregister(ctx: RunContext) -> list[MigrationUnit]:
    """Remove the source copies from the source inventory, keeping their files."""
    units = ctx.units_reached(UnitStatus.STARTED)
    if not units:
        ctx.ledger.warning("No migrated VMs whose source copy needs removing")
        return []

    prompt = (
        f"WARNING: unregister {len(units)} source VM(s) from the source vCenter? "
        "Files stay on the datastore, but this is hard to undo."
    )
    if not ctx.gate(prompt):
        ctx.ledger.warning("Source deregistration declined by operator")
        return []

    source = ctx.sessions.source
    removed = []
    for unit in units:
        try:
            ctx.perform(f"unregister source VM '{unit.name}'", source.unregister_vm, unit.name)
        except (OperationError, EntityNotFoundError) as e:
            ctx.ledger.error(f"Unregister of source VM '{unit.name}' failed: {e}")
            continue
        unit.advance(UnitStatus.DEREGISTERED)
        removed.append(unit)

    ctx.ledger.success(f"Unregistered {len(removed)} source VM(s)")
    return removed
