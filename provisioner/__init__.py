"""Provisioner — reboot-resilient host provisioning steps."""

__version__ = "0.1.0"
