"""vmigrate: move VMware VMs between vSphere/ONTAP environment pairs."""

__version__ = "0.1.0"
