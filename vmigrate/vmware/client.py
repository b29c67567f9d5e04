"""VMware vCenter client connection and object lookup."""

from __future__ import annotations

import ssl
import time
from typing import Optional

from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim

from vmigrate.errors import MigrationConnectionError, OperationError
from vmigrate.utils.logging import get_logger

logger = get_logger(__name__)


class VSphereClient:
    """Manages one connection to a vCenter.

    The migration holds two of these at once (source and target), so
    sessions are closed explicitly by the sequencer's teardown instead of
    at interpreter exit.
    """

    def __init__(self, label: str = "vCenter"):
        self.label = label
        self._si: Optional[vim.ServiceInstance] = None
        self._content: Optional[vim.ServiceInstanceContent] = None
        self.host: str = ""

    @property
    def content(self) -> vim.ServiceInstanceContent:
        if self._content is None:
            raise ConnectionError(f"Not connected to {self.label}. Call connect() first.")
        return self._content

    @property
    def connected(self) -> bool:
        return self._si is not None

    def connect(
        self,
        host: str,
        username: str,
        password: str,
        port: int = 443,
        insecure: bool = False,
        max_retries: int = 3,
    ) -> vim.ServiceInstance:
        """Connect to vCenter with retry logic.

        Raises:
            MigrationConnectionError: If all connection attempts fail
        """
        self.host = host
        ssl_context = None
        if insecure:
            ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        last_error = None
        for attempt in range(1, max_retries + 1):
            try:
                logger.info(f"Connecting to {self.label} {host} (attempt {attempt}/{max_retries})")
                self._si = SmartConnect(
                    host=host,
                    user=username,
                    pwd=password,
                    port=port,
                    sslContext=ssl_context,
                )
                self._content = self._si.RetrieveContent()
                logger.info(f"Connected to {self.label}: {host} "
                            f"(API version: {self._content.about.apiVersion})")
                return self._si

            except Exception as e:
                last_error = e
                if attempt < max_retries:
                    delay = 2 ** attempt
                    logger.warning(f"Connection failed: {e}. Retrying in {delay}s...")
                    time.sleep(delay)
                else:
                    logger.error(f"All {max_retries} connection attempts failed")

        raise MigrationConnectionError(self.label, host, str(last_error))

    def disconnect(self):
        """Disconnect from vCenter. Errors propagate to the caller's teardown."""
        if self._si:
            try:
                Disconnect(self._si)
                logger.info(f"Disconnected from {self.label}: {self.host}")
            finally:
                self._si = None
                self._content = None

    def get_container_view(self, obj_type: list, recursive: bool = True):
        """Create a container view for efficient object retrieval."""
        return self.content.viewManager.CreateContainerView(
            self.content.rootFolder, obj_type, recursive
        )

    def find_by_name(self, obj_type, name: str):
        """Return the first managed object of ``obj_type`` named ``name``, or None."""
        view = self.get_container_view([obj_type])
        try:
            for obj in view.view:
                if obj.name == name:
                    return obj
        finally:
            view.Destroy()
        return None

    def wait_for_task(self, task: vim.Task, timeout: int = 600) -> None:
        """Wait for a vSphere task to complete.

        Raises:
            OperationError: If task fails
            TimeoutError: If the task is still running after ``timeout`` seconds
        """
        start = time.time()
        while task.info.state in (vim.TaskInfo.State.running, vim.TaskInfo.State.queued):
            if time.time() - start > timeout:
                raise TimeoutError(f"Task timed out after {timeout}s: {task.info.descriptionId}")
            time.sleep(2)

        if task.info.state == vim.TaskInfo.State.error:
            raise OperationError(f"Task failed: {task.info.error.msg}")

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.disconnect()
