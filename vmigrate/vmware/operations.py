"""Mutating vCenter operations used during cutover and source cleanup."""

from __future__ import annotations

from pyVmomi import vim, vmodl

from vmigrate.errors import EntityNotFoundError, MountError, OperationError, RegistrationError
from vmigrate.utils.logging import get_logger
from vmigrate.vmware.client import VSphereClient
from vmigrate.vmware.inventory import VMInventory

logger = get_logger(__name__)


def _datacenter_of(entity) -> vim.Datacenter:
    parent = getattr(entity, "parent", None)
    while parent:
        if isinstance(parent, vim.Datacenter):
            return parent
        parent = getattr(parent, "parent", None)
    raise EntityNotFoundError("Datacenter", f"parent of {entity.name}")


class VSphereOperations(VMInventory):
    """Read-only lookups plus the calls that change vCenter state.

    Every method here is routed through the run context's simulation
    funnel by the pipeline steps, so none of them runs during a dry run.
    """

    def __init__(self, client: VSphereClient, task_timeout: int = 600):
        super().__init__(client)
        self.task_timeout = task_timeout

    def _run_task(self, task, what: str) -> None:
        try:
            self.client.wait_for_task(task, timeout=self.task_timeout)
        except vmodl.MethodFault as e:
            raise OperationError(f"{what} failed: {e.msg}") from e
        except TimeoutError as e:
            raise OperationError(f"{what} did not finish: {e}") from e

    def power_off(self, vm_name: str) -> None:
        vm = self._vm(vm_name)
        logger.info(f"Powering off VM '{vm_name}'")
        try:
            self._run_task(vm.PowerOffVM_Task(), f"Power off of '{vm_name}'")
        except vmodl.MethodFault as e:
            raise OperationError(f"Power off of '{vm_name}' failed: {e.msg}") from e

    def power_on(self, vm_name: str) -> None:
        """Issue power-on without waiting: the task blocks while a question is pending."""
        vm = self._vm(vm_name)
        try:
            vm.PowerOnVM_Task()
        except vmodl.MethodFault as e:
            raise OperationError(f"Power on of '{vm_name}' failed: {e.msg}") from e

    def answer_question(self, vm_name: str, question_id: str, choice_key: str) -> None:
        vm = self._vm(vm_name)
        try:
            vm.AnswerVM(questionId=question_id, answerChoice=choice_key)
        except vmodl.MethodFault as e:
            raise OperationError(f"Cannot answer question on '{vm_name}': {e.msg}") from e

    def disconnect_adapter(self, vm_name: str, nic_key: int) -> None:
        """Set an adapter to disconnected and not connected at power-on."""
        vm = self._vm(vm_name)
        with self._reading("VM", vm_name):
            nic = next((d for d in vm.config.hardware.device if d.key == nic_key), None)
        if nic is None:
            raise EntityNotFoundError("Network adapter", str(nic_key), vm_name)

        nic.connectable.connected = False
        nic.connectable.startConnected = False
        change = vim.vm.device.VirtualDeviceSpec(
            operation=vim.vm.device.VirtualDeviceSpec.Operation.edit,
            device=nic,
        )
        try:
            self._run_task(
                vm.ReconfigVM_Task(spec=vim.vm.ConfigSpec(deviceChange=[change])),
                f"Disconnect of adapter {nic_key} on '{vm_name}'",
            )
        except vmodl.MethodFault as e:
            raise OperationError(f"Reconfigure of '{vm_name}' failed: {e.msg}") from e

    def unregister_vm(self, vm_name: str) -> None:
        """Remove the VM from inventory, leaving its files on the datastore."""
        vm = self._vm(vm_name)
        try:
            vm.UnregisterVM()
        except vmodl.MethodFault as e:
            raise OperationError(f"Unregister of '{vm_name}' failed: {e.msg}") from e

    def mount_nfs(self, host_name: str, datastore: str, remote_host: str, remote_path: str) -> None:
        """Mount an NFS export as a datastore on one host."""
        host = self._host(host_name)
        spec = vim.host.NasVolume.Specification(
            remoteHost=remote_host,
            remotePath=remote_path,
            localPath=datastore,
            accessMode="readWrite",
            type="NFS",
        )
        try:
            host.configManager.datastoreSystem.CreateNasDatastore(spec)
        except vmodl.MethodFault as e:
            raise MountError(datastore, f"host {host_name}: {e.msg}") from e

    def register_vm(self, vmx_path: str, vm_name: str, host_name: str, cluster_name: str) -> None:
        """Register a .vmx on a host in the cluster's root resource pool."""
        cluster = self._cluster(cluster_name)
        host = self._host(host_name)
        with self._reading("Cluster", cluster_name):
            folder = _datacenter_of(cluster).vmFolder
        try:
            task = folder.RegisterVM_Task(
                path=vmx_path,
                name=vm_name,
                asTemplate=False,
                pool=cluster.resourcePool,
                host=host,
            )
            self._run_task(task, f"Registration of '{vm_name}'")
        except (vmodl.MethodFault, OperationError) as e:
            raise RegistrationError(vm_name, str(getattr(e, "msg", e))) from e
