"""Replication step: bring each datastore's SnapMirror relationships to a
final state (update → wait for the transfer → quiesce → break).

Failures are isolated per relationship. A datastore with no matching
relationship only produces a warning; a datastore whose relationship
failed marks its VMs Failed so nothing later touches them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from vmigrate.errors import EntityNotFoundError, OperationCancelled, OperationError
from vmigrate.pipeline.context import RunContext
from vmigrate.pipeline.matching import match_relationships
from vmigrate.pipeline.models import ReplicationRelationship, UnitStatus
from vmigrate.pipeline.polling import wait_until


@dataclass
class ReplicationResult:
    processed: list[ReplicationRelationship] = field(default_factory=list)
    failed: list[ReplicationRelationship] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)

    @property
    def processed_count(self) -> int:
        return len(self.processed)


def locations_of(ctx: RunContext, status: UnitStatus) -> list[str]:
    """Distinct datastore names of units in ``status``, in batch order."""
    seen: dict[str, None] = {}
    for unit in ctx.units_in(status):
        seen.setdefault(unit.source_location, None)
    return list(seen)


def replicate(ctx: RunContext) -> ReplicationResult:
    storage = ctx.sessions.storage
    relationships = storage.list_relationships()
    ctx.ledger.info(f"Found {len(relationships)} SnapMirror relationship(s) on the target cluster")

    result = ReplicationResult()
    for location in locations_of(ctx, UnitStatus.VERIFIED):
        units = ctx.units_on(location, UnitStatus.VERIFIED)
        matches = match_relationships(location, relationships)
        if not matches:
            ctx.ledger.warning(f"No SnapMirror relationship matches datastore '{location}'")
            result.unmatched.append(location)
            for unit in units:
                unit.advance(UnitStatus.REPLICATED)
            continue

        failures = []
        for relationship in matches:
            try:
                _finish_relationship(ctx, relationship)
                result.processed.append(relationship)
            except (OperationError, EntityNotFoundError, OperationCancelled) as e:
                ctx.ledger.error(f"SnapMirror cutover of {relationship} failed: {e}")
                result.failed.append(relationship)
                failures.append(str(e))

        for unit in units:
            if failures:
                unit.fail(f"Replication of datastore '{location}' failed: {failures[0]}")
            else:
                unit.advance(UnitStatus.REPLICATED)

    ctx.ledger.success(
        f"Replication step done: {result.processed_count} relationship(s) processed, "
        f"{len(result.failed)} failed, {len(result.unmatched)} datastore(s) without a relationship"
    )
    return result


def _finish_relationship(ctx: RunContext, relationship: ReplicationRelationship) -> None:
    storage = ctx.sessions.storage
    if ctx.cancel.is_set():
        raise OperationCancelled(f"Cancelled before cutover of {relationship}")

    ctx.perform(f"update SnapMirror relationship {relationship}", storage.update_relationship, relationship)
    if not ctx.simulate:
        wait_until(
            lambda: not storage.get_relationship(relationship.uuid).transferring,
            ctx.poll_policy,
            f"transfer on {relationship}",
            cancel=ctx.cancel,
            sleep=ctx.sleep,
        )
        ctx.ledger.info(f"Transfer on {relationship} complete")

    ctx.perform(f"quiesce SnapMirror relationship {relationship}", storage.quiesce_relationship, relationship)
    ctx.perform(f"break SnapMirror relationship {relationship}", storage.break_relationship, relationship)
    if not ctx.simulate:
        ctx.ledger.success(f"SnapMirror relationship {relationship} is broken off")
