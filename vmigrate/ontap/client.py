"""NetApp ONTAP storage operations via the ONTAP REST API.

Wraps the ``netapp_ontap`` SDK for the calls the migration needs:
  - enumerate volumes and data interfaces of an SVM
  - enumerate SnapMirror relationships and refresh their state
  - update (transfer), quiesce and break a relationship

Vendor errors are translated to OperationError so steps can isolate them.
"""

from __future__ import annotations

from typing import Optional

from netapp_ontap import HostConnection, NetAppRestError
from netapp_ontap.resources import (
    Cluster,
    IpInterface,
    SnapmirrorRelationship,
    SnapmirrorTransfer,
    Volume,
)
from pydantic import BaseModel, Field

from vmigrate.errors import EntityNotFoundError, MigrationConnectionError, OperationError
from vmigrate.pipeline.models import ReplicationRelationship
from vmigrate.utils.logging import get_logger

logger = get_logger(__name__)


class VolumeInfo(BaseModel):
    """A volume on the target SVM."""
    name: str
    svm: str = ""
    junction_path: str = ""            # NFS export path, e.g. "/ds_prod"
    state: str = ""


class InterfaceInfo(BaseModel):
    """A network interface (LIF) on the target SVM."""
    name: str
    address: str = ""
    role: str = ""                     # "data", "intercluster", "management"
    protocols: list[str] = Field(default_factory=list)   # "nfs", "cifs", "iscsi", ...
    state: str = ""

    @property
    def is_up(self) -> bool:
        return self.state == "up"


def _role_and_protocols(services: list[str]) -> tuple[str, list[str]]:
    """Derive a role and data protocols from LIF service names like ``data_nfs``."""
    protocols = [
        s[len("data_"):] for s in services
        if s.startswith("data_") and s not in ("data_core", "data_fpolicy_client")
    ]
    if any(s.startswith("data_") for s in services):
        return "data", protocols
    if any(s.startswith("intercluster") for s in services):
        return "intercluster", protocols
    if any(s.startswith("management") for s in services):
        return "management", protocols
    return "", protocols


class OntapClient:
    """Session against one ONTAP cluster management endpoint."""

    def __init__(self):
        self._connection: Optional[HostConnection] = None
        self._host: str = ""

    @property
    def connection(self) -> HostConnection:
        if self._connection is None:
            raise ConnectionError("Not connected to ONTAP. Call connect() first.")
        return self._connection

    def connect(self, host: str, username: str, password: str, insecure: bool = False) -> None:
        """Open a session and verify it by reading the cluster identity.

        Raises:
            MigrationConnectionError: the cluster is unreachable or rejects the login
        """
        self._host = host
        connection = HostConnection(host, username=username, password=password, verify=not insecure)
        try:
            with connection:
                cluster = Cluster()
                cluster.get(fields="name,version")
        except NetAppRestError as e:
            raise MigrationConnectionError("ONTAP cluster", host, str(e)) from e
        self._connection = connection
        logger.info(f"Connected to ONTAP cluster {getattr(cluster, 'name', host)}")

    def disconnect(self) -> None:
        if self._connection is not None:
            self._connection = None
            logger.info(f"Disconnected from ONTAP cluster: {self._host}")

    # ── Read-only queries ─────────────────────────────────────────

    def list_volumes(self, svm: str) -> list[VolumeInfo]:
        try:
            with self.connection:
                records = list(Volume.get_collection(fields="name,svm.name,nas.path,state", **{"svm.name": svm}))
        except NetAppRestError as e:
            raise OperationError(f"Cannot list volumes on SVM '{svm}': {e}") from e

        volumes = []
        for vol in records:
            nas = getattr(vol, "nas", None)
            volumes.append(VolumeInfo(
                name=vol.name,
                svm=svm,
                junction_path=getattr(nas, "path", "") or "",
                state=getattr(vol, "state", "") or "",
            ))
        return volumes

    def list_interfaces(self, svm: str) -> list[InterfaceInfo]:
        try:
            with self.connection:
                records = list(IpInterface.get_collection(
                    fields="name,ip.address,services,state", **{"svm.name": svm}
                ))
        except NetAppRestError as e:
            raise OperationError(f"Cannot list interfaces on SVM '{svm}': {e}") from e

        interfaces = []
        for lif in records:
            services = list(getattr(lif, "services", None) or [])
            role, protocols = _role_and_protocols(services)
            ip = getattr(lif, "ip", None)
            interfaces.append(InterfaceInfo(
                name=lif.name,
                address=getattr(ip, "address", "") or "",
                role=role,
                protocols=protocols,
                state=getattr(lif, "state", "") or "",
            ))
        return interfaces

    def list_relationships(self) -> list[ReplicationRelationship]:
        try:
            with self.connection:
                records = list(SnapmirrorRelationship.get_collection(
                    fields="uuid,source.path,destination.path,state,transfer.state"
                ))
        except NetAppRestError as e:
            raise OperationError(f"Cannot list SnapMirror relationships: {e}") from e
        return [self._to_relationship(r) for r in records]

    def get_relationship(self, uuid: str) -> ReplicationRelationship:
        record = SnapmirrorRelationship(uuid=uuid)
        try:
            with self.connection:
                record.get(fields="uuid,source.path,destination.path,state,transfer.state")
        except NetAppRestError as e:
            if getattr(e, "status_code", None) == 404:
                raise EntityNotFoundError("SnapMirror relationship", uuid, self._host) from e
            raise OperationError(f"Cannot read SnapMirror relationship {uuid}: {e}") from e
        return self._to_relationship(record)

    @staticmethod
    def _to_relationship(record) -> ReplicationRelationship:
        transfer = getattr(record, "transfer", None)
        return ReplicationRelationship(
            uuid=record.uuid,
            source_path=record.source.path,
            destination_path=record.destination.path,
            state=getattr(record, "state", "") or "",
            transfer_state=getattr(transfer, "state", "") or "",
        )

    # ── Mutating calls ────────────────────────────────────────────

    def update_relationship(self, relationship: ReplicationRelationship) -> None:
        """Start an incremental transfer on the relationship."""
        logger.debug(f"Starting transfer on {relationship}")
        try:
            with self.connection:
                SnapmirrorTransfer(relationship.uuid).post(hydrate=False)
        except NetAppRestError as e:
            raise OperationError(f"Update of {relationship} failed: {e}") from e

    def quiesce_relationship(self, relationship: ReplicationRelationship) -> None:
        self._set_state(relationship, "paused", "Quiesce")

    def break_relationship(self, relationship: ReplicationRelationship) -> None:
        self._set_state(relationship, "broken_off", "Break")

    def _set_state(self, relationship: ReplicationRelationship, state: str, verb: str) -> None:
        record = SnapmirrorRelationship(uuid=relationship.uuid)
        record.state = state
        try:
            with self.connection:
                record.patch(poll=True)
        except NetAppRestError as e:
            raise OperationError(f"{verb} of {relationship} failed: {e}") from e

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.disconnect()
