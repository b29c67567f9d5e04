"""Cutover steps on the target side: mount, register, start."""

from __future__ import annotations

import itertools

from vmigrate.errors import EntityNotFoundError, MountError, OperationError, RegistrationError
from vmigrate.pipeline.confirm import ABORT, SKIP, START, START_CHOICES
from vmigrate.pipeline.context import RunContext
from vmigrate.pipeline.matching import match_best, select_data_interface
from vmigrate.pipeline.models import MigrationUnit, UnitStatus
from vmigrate.pipeline.replication import locations_of
from vmigrate.vmware.inventory import VMQuestion

RUNNING_STATE = "poweredOn"
MOVED_ANSWER_DEFAULT = "1"


def vmx_path_for(unit: MigrationUnit) -> str:
    return f"[{unit.source_location}] {unit.name}/{unit.name}.vmx"


# ── Mount ────────────────────────────────────────────────────────

def mount(ctx: RunContext) -> list[str]:
    """Mount every replicated datastore on all hosts of the target cluster.

    Returns the datastore names that were mounted. A datastore that cannot
    be mounted fails its own VMs only.
    """
    storage = ctx.sessions.storage
    target = ctx.sessions.target
    svm = ctx.config.app.target_svm
    cluster = ctx.config.app.target_cluster

    locations = locations_of(ctx, UnitStatus.REPLICATED)
    if not locations:
        ctx.ledger.warning("No replicated datastores to mount")
        return []

    volumes = storage.list_volumes(svm)
    interfaces = storage.list_interfaces(svm)
    hosts = target.cluster_hosts(cluster)
    ctx.ledger.info(
        f"Target SVM '{svm}': {len(volumes)} volume(s), {len(interfaces)} interface(s); "
        f"cluster '{cluster}': {len(hosts)} usable host(s)"
    )

    mounted = []
    for location in locations:
        units = ctx.units_on(location, UnitStatus.REPLICATED)
        try:
            volume_name = _mount_location(ctx, location, volumes, interfaces, hosts)
        except (MountError, OperationError, EntityNotFoundError) as e:
            ctx.ledger.error(str(e))
            for unit in units:
                unit.fail(str(e))
            continue

        for unit in units:
            unit.target_location = volume_name
            unit.advance(UnitStatus.MOUNTED)
        mounted.append(location)

    ctx.ledger.success(f"Mounted {len(mounted)} of {len(locations)} datastore(s)")
    return mounted


def _mount_location(ctx: RunContext, location: str, volumes, interfaces, hosts) -> str:
    volume = match_best(location, volumes, lambda v: v.name)
    if volume is None:
        raise MountError(location, f"no matching volume on SVM '{ctx.config.app.target_svm}'")
    if not volume.junction_path:
        raise MountError(location, f"volume '{volume.name}' is not mounted in the SVM namespace")

    lif = select_data_interface(interfaces, ctx.settings.nfs_protocol)
    if lif is None:
        raise MountError(location, f"no data interface serves {ctx.settings.nfs_protocol.upper()}")
    if not hosts:
        raise MountError(location, f"no usable hosts in cluster '{ctx.config.app.target_cluster}'")

    target = ctx.sessions.target
    for host in hosts:
        if target.host_has_datastore(host, location):
            ctx.ledger.info(f"Datastore '{location}' already mounted on host '{host}'")
            continue
        ctx.perform(
            f"mount {lif.address}:{volume.junction_path} as datastore '{location}' on host '{host}'",
            target.mount_nfs, host, location, lif.address, volume.junction_path,
        )
    ctx.ledger.info(f"Datastore '{location}' backed by volume '{volume.name}' via {lif.name} ({lif.address})")
    return volume.name


# ── Register ─────────────────────────────────────────────────────

def register(ctx: RunContext) -> list[MigrationUnit]:
    """Register mounted VMs on the target after one batch confirmation."""
    units = ctx.units_in(UnitStatus.MOUNTED)
    if not units:
        ctx.ledger.warning("No VMs ready for registration")
        return []

    cluster = ctx.config.app.target_cluster
    if not ctx.gate(f"Register {len(units)} VM(s) on target cluster '{cluster}'?"):
        ctx.ledger.warning("Registration declined by operator; no VMs registered")
        return []

    target = ctx.sessions.target
    hosts = target.cluster_hosts(cluster)
    if not hosts:
        for unit in units:
            error = RegistrationError(unit.name, f"no usable hosts in cluster '{cluster}'")
            ctx.ledger.error(str(error))
            unit.fail(str(error))
        return []

    rotation = itertools.cycle(hosts)
    registered = []
    for unit in units:
        vmx = vmx_path_for(unit)
        host = next(rotation)
        try:
            ctx.perform(
                f"register VM '{unit.name}' from {vmx} on host '{host}'",
                target.register_vm, vmx, unit.name, host, cluster,
            )
        except (OperationError, EntityNotFoundError) as e:
            ctx.ledger.error(f"Registration of VM '{unit.name}' failed: {e}")
            unit.fail(str(e))
            continue
        unit.advance(UnitStatus.REGISTERED)
        registered.append(unit)
        if not ctx.simulate:
            ctx.ledger.success(f"Registered VM '{unit.name}' on host '{host}'")

    return registered


# ── Start ────────────────────────────────────────────────────────

def start(ctx: RunContext) -> list[MigrationUnit]:
    """Power on registered VMs one at a time, each individually confirmed.

    Per VM the operator may start it, skip it, or abort the rest. When a
    start fails the operator decides whether to carry on.
    """
    units = ctx.units_in(UnitStatus.REGISTERED)
    if not units:
        ctx.ledger.warning("No registered VMs to start")
        return []

    started = []
    for index, unit in enumerate(units):
        if not ctx.simulate:
            answer = ctx.confirmation.choose(
                f"Power on VM '{unit.name}' on the target?", START_CHOICES, default=START
            )
            if answer == SKIP:
                ctx.ledger.warning(f"Power-on of VM '{unit.name}' skipped by operator")
                continue
            if answer == ABORT:
                ctx.ledger.warning(
                    f"Power-on aborted by operator; {len(units) - index} VM(s) left unstarted"
                )
                break

        try:
            _start_unit(ctx, unit)
        except (OperationError, EntityNotFoundError) as e:
            ctx.ledger.error(f"Power-on of VM '{unit.name}' failed: {e}")
            unit.fail(str(e))
            remaining = len(units) - index - 1
            if remaining and not ctx.gate(f"Continue with the remaining {remaining} VM(s)?", default=True):
                ctx.ledger.warning(f"Power-on step aborted by operator; {remaining} VM(s) left unstarted")
                break
            continue

        unit.advance(UnitStatus.STARTED)
        started.append(unit)

    return started


def _start_unit(ctx: RunContext, unit: MigrationUnit) -> None:
    target = ctx.sessions.target
    ctx.perform(f"start VM '{unit.name}'", target.power_on, unit.name)
    if ctx.simulate:
        return

    ctx.sleep(ctx.settings.power_on_settle_seconds)
    question = target.pending_question(unit.name)
    if question is not None:
        key = moved_answer(question)
        ctx.ledger.info(f"VM '{unit.name}' asks: {question.text!r}; answering 'moved' (choice {key})")
        ctx.perform(
            f"answer 'moved' on VM '{unit.name}'",
            target.answer_question, unit.name, question.id, key,
        )
        ctx.sleep(ctx.settings.power_on_settle_seconds)

    state = target.power_state(unit.name)
    if state == RUNNING_STATE:
        ctx.ledger.success(f"VM '{unit.name}' is running on the target")
    else:
        ctx.ledger.warning(f"VM '{unit.name}' is {state} after power-on; check it manually")


def moved_answer(question: VMQuestion) -> str:
    """Choice key meaning "I moved it" (keep the VM identity)."""
    for key, label in question.choices:
        if "move" in label.lower():
            return key
    return MOVED_ANSWER_DEFAULT
