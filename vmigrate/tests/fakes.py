"""In-memory stand-ins for ONTAP, the two vCenters and the tagging API.

Every fake records its state-changing calls in ``calls`` so tests can
assert exactly what would have hit the real systems.
"""

from collections import defaultdict
from dataclasses import replace

from vmigrate.errors import EntityNotFoundError, MountError, OperationError, RegistrationError
from vmigrate.ontap.client import InterfaceInfo, VolumeInfo
from vmigrate.pipeline.models import MigrationUnit, ReplicationRelationship, UnitStatus
from vmigrate.vmware.inventory import DatastoreInfo, NICInfo, VMInfo


class FakeStorage:
    def __init__(self):
        self.relationships: dict[str, ReplicationRelationship] = {}
        self.volumes: list[VolumeInfo] = []
        self.interfaces: list[InterfaceInfo] = []
        self.transfer_polls: dict[str, int] = {}
        self.fail_update: set[str] = set()
        self.calls: list[tuple] = []
        self.closed = False

    def add_relationship(self, uuid, source_path, destination_path):
        self.relationships[uuid] = ReplicationRelationship(
            uuid=uuid, source_path=source_path, destination_path=destination_path,
            state="snapmirrored", transfer_state="idle",
        )

    def list_relationships(self):
        return list(self.relationships.values())

    def get_relationship(self, uuid):
        rel = self.relationships[uuid]
        remaining = self.transfer_polls.get(uuid, 0)
        if remaining > 0:
            self.transfer_polls[uuid] = remaining - 1
            return replace(rel, transfer_state="transferring")
        return replace(rel, transfer_state="idle")

    def update_relationship(self, relationship):
        self.calls.append(("update_relationship", relationship.uuid))
        if relationship.uuid in self.fail_update:
            raise OperationError(f"Update of {relationship} failed: destination offline")

    def quiesce_relationship(self, relationship):
        self.calls.append(("quiesce_relationship", relationship.uuid))

    def break_relationship(self, relationship):
        self.calls.append(("break_relationship", relationship.uuid))
        self.relationships[relationship.uuid] = replace(relationship, state="broken_off")

    def list_volumes(self, svm):
        return list(self.volumes)

    def list_interfaces(self, svm):
        return list(self.interfaces)

    def disconnect(self):
        self.closed = True


class FakeVSphere:
    def __init__(self, label):
        self.label = label
        self.vms: dict[str, VMInfo] = {}
        self.hosts: dict[str, set[str]] = {}
        self.questions = {}
        self.stay_off: set[str] = set()
        self.fail = defaultdict(set)
        self.calls: list[tuple] = []
        self.closed = False

    def add_vm(self, name, datastore, power_state="poweredOff", nics=1):
        self.vms[name] = VMInfo(
            name=name,
            moref=f"vm-{len(self.vms) + 100}",
            power_state=power_state,
            vmx_path=f"[{datastore}] {name}/{name}.vmx",
            datastores=[datastore],
            nics=[NICInfo(label=f"Network adapter {i + 1}", key=4000 + i, connected=True)
                  for i in range(nics)],
        )

    def _vm(self, name):
        if name not in self.vms:
            raise EntityNotFoundError("VM", name, self.label)
        return self.vms[name]

    # read-only
    def get_vm_info(self, name):
        return self._vm(name).model_copy(deep=True)

    def power_state(self, name):
        return self._vm(name).power_state

    def get_datastore(self, name):
        return DatastoreInfo(name=name, type="NFS", remote_host="10.0.0.5", remote_path=f"/{name}")

    def cluster_hosts(self, cluster):
        return list(self.hosts)

    def host_has_datastore(self, host, datastore):
        return datastore in self.hosts[host]

    def pending_question(self, name):
        return self.questions.get(name)

    # state-changing
    def power_off(self, name):
        self.calls.append(("power_off", name))
        self._vm(name).power_state = "poweredOff"

    def power_on(self, name):
        self.calls.append(("power_on", name))
        if name in self.fail["power_on"]:
            raise OperationError(f"Power on of '{name}' failed: insufficient resources")
        if name not in self.stay_off and name not in self.questions:
            self._vm(name).power_state = "poweredOn"

    def answer_question(self, name, question_id, choice_key):
        self.calls.append(("answer_question", name, question_id, choice_key))
        self.questions.pop(name, None)
        if name not in self.stay_off:
            self._vm(name).power_state = "poweredOn"

    def disconnect_adapter(self, name, nic_key):
        self.calls.append(("disconnect_adapter", name, nic_key))
        for nic in self._vm(name).nics:
            if nic.key == nic_key:
                nic.connected = False

    def unregister_vm(self, name):
        self.calls.append(("unregister_vm", name))
        if name in self.fail["unregister_vm"]:
            raise OperationError(f"Unregister of '{name}' failed")
        del self.vms[name]

    def mount_nfs(self, host, datastore, remote_host, remote_path):
        self.calls.append(("mount_nfs", host, datastore, remote_host, remote_path))
        if datastore in self.fail["mount_nfs"]:
            raise MountError(datastore, f"host {host}: access denied by export policy")
        self.hosts[host].add(datastore)

    def register_vm(self, vmx_path, name, host, cluster):
        self.calls.append(("register_vm", vmx_path, name, host, cluster))
        if name in self.fail["register_vm"]:
            raise RegistrationError(name, "vmx file not found")
        datastore = vmx_path[1:].split("]", 1)[0]
        self.vms[name] = VMInfo(
            name=name, moref=f"vm-{len(self.vms) + 900}", power_state="poweredOff",
            vmx_path=vmx_path, datastores=[datastore], host=host,
        )

    def disconnect(self):
        self.closed = True


class FakeTags:
    def __init__(self):
        self.categories: dict[str, str] = {}
        self.tags: dict[str, tuple[str, str]] = {}
        self.attachments: list[tuple[str, str]] = []
        self.calls: list[tuple] = []
        self.closed = False

    def find_category(self, name):
        return next((cid for cid, n in self.categories.items() if n == name), None)

    def find_tag(self, category_id, name):
        return next((tid for tid, (cid, n) in self.tags.items() if cid == category_id and n == name), None)

    def create_category(self, name):
        self.calls.append(("create_category", name))
        cid = f"cat-{len(self.categories) + 1}"
        self.categories[cid] = name
        return cid

    def create_tag(self, category_id, name):
        self.calls.append(("create_tag", category_id, name))
        tid = f"tag-{len(self.tags) + 1}"
        self.tags[tid] = (category_id, name)
        return tid

    def attach(self, tag_id, moref):
        self.calls.append(("attach", tag_id, moref))
        self.attachments.append((tag_id, moref))

    def logout(self):
        self.closed = True


class World:
    """A source vCenter, a target vCenter + ONTAP cluster, and their sessions."""

    def __init__(self):
        self.storage = FakeStorage()
        self.source = FakeVSphere("source vCenter")
        self.target = FakeVSphere("target vCenter")
        self.tags = FakeTags()
        self.connect_error = None

    def connect(self, app, sessions):
        sessions.source = self.source
        sessions.on_close("source vCenter", self.source.disconnect)
        sessions.target = self.target
        sessions.on_close("target vCenter", self.target.disconnect)
        if self.connect_error is not None:
            raise self.connect_error
        sessions.tags = self.tags
        sessions.on_close("tagging API", self.tags.logout)
        sessions.storage = self.storage
        sessions.on_close("ONTAP", self.storage.disconnect)

    def mutating_calls(self):
        return self.source.calls + self.target.calls + self.storage.calls + self.tags.calls


def build_world(datastores=("ds_web", "ds_db"), vms=(("web01", "ds_web"), ("db01", "ds_db"))):
    world = World()
    for name, datastore in vms:
        world.source.add_vm(name, datastore)
    for ds in datastores:
        world.storage.add_relationship(f"rel-{ds}", f"svm_src:{ds}", f"svm_dr:{ds}")
        world.storage.volumes.append(VolumeInfo(name=ds, svm="svm_dr", junction_path=f"/{ds}", state="online"))
    world.storage.interfaces = [
        InterfaceInfo(name="mgmt1", address="10.0.0.2", role="management", state="up"),
        InterfaceInfo(name="nfs_lif1", address="10.0.0.10", role="data", protocols=["nfs"], state="up"),
    ]
    world.target.hosts = {"esx-b1": set(), "esx-b2": set()}
    return world


def unit_at(name, location, status):
    """A unit that has lawfully walked every step up to ``status``."""
    unit = MigrationUnit(name=name, source_location=location)
    for step in UnitStatus:
        if step is UnitStatus.PENDING:
            continue
        if step.rank > status.rank:
            break
        unit.advance(step)
    return unit


def write_batch(path, names):
    path.write_text("VMName\n" + "".join(f"{n}\n" for n in names))
    return path
