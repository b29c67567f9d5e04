"""Name matching between vSphere datastores and ONTAP volumes/relationships.

Datastore and volume names usually agree, but not always: target volumes
often carry a suffix such as ``_dst`` or ``_mirror``. Every lookup therefore
runs the same ordered cascade and stops at the first tier that matches:

1. exact name
2. substring: the candidate contains the wanted name
3. reverse substring: the wanted name contains the candidate

Tiers 2 and 3 only consider names longer than MIN_SUBSTRING_LENGTH so a
short name like ``vm`` does not pull in every volume on the SVM.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional, Sequence, TypeVar

from vmigrate.pipeline.models import ReplicationRelationship

T = TypeVar("T")

MIN_SUBSTRING_LENGTH = 3


def _long_enough(*names: str) -> bool:
    return all(len(n) > MIN_SUBSTRING_LENGTH for n in names)


def match_exact(wanted: str, candidate: str) -> bool:
    return wanted == candidate


def match_substring(wanted: str, candidate: str) -> bool:
    return _long_enough(wanted, candidate) and wanted in candidate


def match_reverse_substring(wanted: str, candidate: str) -> bool:
    return _long_enough(wanted, candidate) and candidate in wanted


def match_all(
    wanted: str,
    items: Iterable[T],
    names: Callable[[T], Sequence[str]],
    tiers: Sequence[Callable[[str, str], bool]] = (match_exact, match_substring),
) -> list[T]:
    """Return every item matched by the first tier that matches anything."""
    items = list(items)
    for tier in tiers:
        found = [item for item in items if any(tier(wanted, n) for n in names(item))]
        if found:
            return found
    return []


def match_best(
    wanted: str,
    items: Iterable[T],
    name: Callable[[T], str],
) -> Optional[T]:
    """Single best match over exact, substring and reverse-substring tiers."""
    found = match_all(
        wanted,
        items,
        lambda item: [name(item)],
        tiers=(match_exact, match_substring, match_reverse_substring),
    )
    return found[0] if found else None


def match_relationships(
    location: str, relationships: Iterable[ReplicationRelationship]
) -> list[ReplicationRelationship]:
    """Relationships whose source or destination volume matches a datastore name.

    Exact matches short-circuit; substring matches are used only when no
    relationship matches exactly.
    """
    return match_all(
        location,
        relationships,
        lambda rel: (rel.source_volume, rel.destination_volume),
    )


def select_data_interface(interfaces, protocol: str = "nfs"):
    """Pick the interface used to mount a volume.

    Priority: data role serving NFS, data role serving ``protocol`` (any
    case), any interface serving ``protocol``, any up data interface.
    """
    interfaces = list(interfaces)
    wanted = protocol.lower()

    def serves(iface, proto: str) -> bool:
        return proto in [p.lower() for p in iface.protocols]

    cascade = (
        lambda i: i.role == "data" and "nfs" in i.protocols,
        lambda i: i.role == "data" and serves(i, wanted),
        lambda i: serves(i, wanted),
        lambda i: i.role == "data" and i.is_up,
    )
    for criterion in cascade:
        for iface in interfaces:
            if criterion(iface):
                return iface
    return None
