"""Discovery and precondition steps.

discover: resolve every VM's datastore on the source vCenter. A VM that
cannot be found aborts the run, since later steps need the complete map.

verify: every VM must be powered off before its storage is cut over.
Violations are collected for the whole batch and only then turned into a
run-fatal PreconditionError (in simulation they are reported as warnings).
"""

from __future__ import annotations

from dataclasses import dataclass

from vmigrate.errors import EntityNotFoundError, PreconditionError
from vmigrate.pipeline.context import RunContext
from vmigrate.pipeline.models import UnitStatus

REQUIRED_POWER_STATE = "poweredOff"


@dataclass
class PreconditionCheck:
    """Result of the power-state check for one VM."""
    unit: str
    power_state: str
    passed: bool

    @property
    def message(self) -> str:
        if self.passed:
            return f"VM '{self.unit}' is {self.power_state}"
        return f"VM '{self.unit}' is {self.power_state or 'in an unknown state'}, expected {REQUIRED_POWER_STATE}"


def discover(ctx: RunContext) -> dict:
    """Populate unit.source_location and the datastore cache.

    Raises:
        EntityNotFoundError: a VM or its datastore does not exist on the source
    """
    source = ctx.sessions.source
    for unit in ctx.units_in(UnitStatus.PENDING):
        info = source.get_vm_info(unit.name)
        location = info.primary_datastore
        if not location:
            raise EntityNotFoundError("Datastore", f"of VM {unit.name}", "source vCenter")

        unit.source_location = location
        if location not in ctx.datastores:
            ctx.datastores[location] = source.get_datastore(location)
        unit.advance(UnitStatus.DISCOVERED)
        ctx.ledger.info(f"VM '{unit.name}' is on datastore '{location}' ({info.power_state})")

    ctx.ledger.success(
        f"Discovered {len(ctx.units)} VM(s) on {len(ctx.datastores)} datastore(s): "
        f"{', '.join(ctx.datastores)}"
    )
    return ctx.datastores


def verify(ctx: RunContext) -> list[PreconditionCheck]:
    """Check power state of every discovered VM.

    Raises:
        PreconditionError: at least one VM is not powered off (live mode only)
    """
    source = ctx.sessions.source
    units = ctx.units_in(UnitStatus.DISCOVERED)
    checks = []

    for unit in units:
        state = source.power_state(unit.name)
        if state != REQUIRED_POWER_STATE and ctx.settings.power_off_source:
            ctx.perform(f"power off source VM '{unit.name}'", source.power_off, unit.name)
            if not ctx.simulate:
                state = source.power_state(unit.name)
        checks.append(PreconditionCheck(unit.name, state, state == REQUIRED_POWER_STATE))

    violations = {c.unit: c.message for c in checks if not c.passed}
    for check in checks:
        if check.passed:
            ctx.ledger.info(check.message)
        elif ctx.simulate:
            ctx.ledger.warning(f"{check.message} (ignored in simulation)")
        else:
            ctx.ledger.error(check.message)

    if violations and not ctx.simulate:
        for unit in units:
            if unit.name in violations:
                unit.fail(violations[unit.name])
        raise PreconditionError(violations)

    for unit in units:
        unit.advance(UnitStatus.VERIFIED)
    ctx.ledger.success(f"{len(units)} VM(s) ready for cutover")
    return checks
