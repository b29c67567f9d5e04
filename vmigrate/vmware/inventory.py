"""Read-only vCenter queries: VMs, datastores, hosts, pending questions.

Everything here returns plain Pydantic snapshots; nothing is modified.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Optional

from pydantic import BaseModel, Field
from pyVmomi import vim, vmodl

from vmigrate.errors import EntityNotFoundError, OperationError
from vmigrate.utils.logging import get_logger
from vmigrate.vmware.client import VSphereClient

logger = get_logger(__name__)


class NICInfo(BaseModel):
    """A VM network adapter."""
    label: str = ""                    # "Network adapter 1"
    key: int = 0
    network: str = ""
    mac_address: str = ""
    connected: bool = False
    start_connected: bool = False


class VMInfo(BaseModel):
    """The parts of a VM the migration cares about."""
    name: str
    moref: str = ""
    power_state: str = ""              # "poweredOn", "poweredOff", "suspended"
    vmx_path: str = ""                 # "[datastore] folder/name.vmx"
    datastores: list[str] = Field(default_factory=list)
    host: str = ""
    cluster: str = ""
    nics: list[NICInfo] = Field(default_factory=list)

    @property
    def primary_datastore(self) -> str:
        """Datastore holding the .vmx, falling back to the first attached one."""
        if self.vmx_path.startswith("["):
            return self.vmx_path[1:].split("]", 1)[0]
        return self.datastores[0] if self.datastores else ""

    @property
    def powered_off(self) -> bool:
        return self.power_state == "poweredOff"


class DatastoreInfo(BaseModel):
    """A datastore as seen from the source vCenter."""
    name: str
    type: str = ""                     # "NFS", "NFS41", "VMFS"
    remote_host: str = ""
    remote_path: str = ""
    capacity_gb: float = 0.0
    free_gb: float = 0.0


class VMQuestion(BaseModel):
    """A question blocking a VM, e.g. "moved or copied?" after registration."""
    id: str
    text: str = ""
    choices: list[tuple[str, str]] = Field(default_factory=list)   # (key, label)


def _get_cluster_name(host_obj) -> str:
    parent = getattr(host_obj, "parent", None)
    if parent and isinstance(parent, vim.ClusterComputeResource):
        return parent.name
    return ""


def _collect_nics(config) -> list[NICInfo]:
    nics = []
    for device in config.hardware.device:
        if not isinstance(device, vim.vm.device.VirtualEthernetCard):
            continue
        backing = device.backing
        network = getattr(backing, "deviceName", "") or ""
        if not network and isinstance(backing, vim.vm.device.VirtualEthernetCard.DistributedVirtualPortBackingInfo):
            network = f"dvs:{backing.port.portgroupKey}"
        connectable = device.connectable
        nics.append(NICInfo(
            label=device.deviceInfo.label if device.deviceInfo else f"nic-{device.key}",
            key=device.key,
            network=network,
            mac_address=device.macAddress or "",
            connected=bool(connectable and connectable.connected),
            start_connected=bool(connectable and connectable.startConnected),
        ))
    return nics


def _collect_vm_info(vm: vim.VirtualMachine) -> VMInfo:
    runtime = vm.runtime
    config = vm.config
    info = VMInfo(
        name=vm.name,
        moref=str(vm._moId),
        power_state=str(runtime.powerState) if runtime else "",
        datastores=[ds.name for ds in (vm.datastore or [])],
    )
    if config is not None:
        info.vmx_path = config.files.vmPathName or ""
        info.nics = _collect_nics(config)
    host_obj = runtime.host if runtime else None
    if host_obj:
        info.host = host_obj.name
        info.cluster = _get_cluster_name(host_obj)
    return info


class VMInventory:
    """Read-only lookups against one vCenter.

    pyVmomi faults raised while reading are turned into
    ``EntityNotFoundError`` (the object vanished) or ``OperationError``.
    """

    def __init__(self, client: VSphereClient):
        self.client = client

    @contextmanager
    def _reading(self, kind: str, name: str):
        try:
            yield
        except vmodl.fault.ManagedObjectNotFound as e:
            raise EntityNotFoundError(kind, name, self.client.host) from e
        except vmodl.MethodFault as e:
            raise OperationError(f"Cannot read {kind} '{name}' on {self.client.host}: {e.msg}") from e

    def _find(self, obj_type, kind: str, name: str):
        with self._reading(kind, name):
            obj = self.client.find_by_name(obj_type, name)
        if obj is None:
            raise EntityNotFoundError(kind, name, self.client.host)
        return obj

    def _vm(self, vm_name: str) -> vim.VirtualMachine:
        return self._find(vim.VirtualMachine, "VM", vm_name)

    def _cluster(self, cluster_name: str) -> vim.ClusterComputeResource:
        return self._find(vim.ClusterComputeResource, "Cluster", cluster_name)

    def _host(self, host_name: str) -> vim.HostSystem:
        return self._find(vim.HostSystem, "Host", host_name)

    def get_vm_info(self, vm_name: str) -> VMInfo:
        """Get VM info by exact name.

        Raises:
            EntityNotFoundError: If VM not found
        """
        vm = self._vm(vm_name)
        with self._reading("VM", vm_name):
            return _collect_vm_info(vm)

    def power_state(self, vm_name: str) -> str:
        vm = self._vm(vm_name)
        with self._reading("VM", vm_name):
            return str(vm.runtime.powerState)

    def get_datastore(self, name: str) -> DatastoreInfo:
        ds = self._find(vim.Datastore, "Datastore", name)
        with self._reading("Datastore", name):
            summary = ds.summary
            info = DatastoreInfo(
                name=ds.name,
                type=summary.type or "",
                capacity_gb=round((summary.capacity or 0) / 1024 ** 3, 2),
                free_gb=round((summary.freeSpace or 0) / 1024 ** 3, 2),
            )
            nas = getattr(ds.info, "nas", None)
        if nas is not None:
            info.remote_host = nas.remoteHost or ""
            info.remote_path = nas.remotePath or ""
        return info

    def cluster_hosts(self, cluster_name: str) -> list[str]:
        """Connected hosts of a cluster that are not in maintenance mode."""
        cluster = self._cluster(cluster_name)
        hosts = []
        with self._reading("Cluster", cluster_name):
            for host in cluster.host:
                runtime = host.runtime
                if runtime.connectionState != "connected" or runtime.inMaintenanceMode:
                    logger.debug(f"Skipping host {host.name}: {runtime.connectionState}, "
                                 f"maintenance={runtime.inMaintenanceMode}")
                    continue
                hosts.append(host.name)
        return hosts

    def host_has_datastore(self, host_name: str, datastore: str) -> bool:
        host = self._host(host_name)
        with self._reading("Host", host_name):
            return any(ds.name == datastore for ds in host.datastore)

    def pending_question(self, vm_name: str) -> Optional[VMQuestion]:
        vm = self._vm(vm_name)
        with self._reading("VM", vm_name):
            question = vm.runtime.question
            if question is None:
                return None
            choices = [(c.key, c.label) for c in (question.choice.choiceInfo or [])]
            return VMQuestion(id=question.id, text=question.text or "", choices=choices)
