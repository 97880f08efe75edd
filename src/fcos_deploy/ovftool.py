"""VMware Fusion deployment through ovftool."""

import logging
from pathlib import Path
from typing import List

from fcos_deploy import runner
from fcos_deploy.butane import IGNITION_ENCODING

logger = logging.getLogger(__name__)

MAX_VIRTUAL_HARDWARE_VERSION = 18


class OvfTool:
    """Imports an OVA into a local VMware Fusion VM folder."""

    @staticmethod
    def build_args(ova: Path, target: Path, vm_name: str, hostname: str, ignition: str) -> List[str]:
        return [
            "ovftool",
            "--powerOffTarget",
            "--overwrite",
            f"--name={vm_name}",
            f"--maxVirtualHardwareVersion={MAX_VIRTUAL_HARDWARE_VERSION}",
            "--allowExtraConfig",
            f"--extraConfig:guestinfo.hostname={hostname}",
            f"--extraConfig:guestinfo.ignition.config.data.encoding={IGNITION_ENCODING}",
            f"--extraConfig:guestinfo.ignition.config.data={ignition}",
            str(ova),
            str(target),
        ]

    @staticmethod
    def deploy(ova: Path, target: Path, vm_name: str, hostname: str, ignition: str) -> None:
        """
        Deploy an OVA with the Ignition payload injected through guestinfo.

        Args:
            ova: Verified CoreOS OVA
            target: Fusion VM folder
            vm_name: Display name of the VM
            hostname: Hostname passed to the guest
            ignition: gzip+base64 encoded Ignition document
        """
        logger.info(f"Deploying '{vm_name}' to '{target}'")
        runner.run(OvfTool.build_args(ova, target, vm_name, hostname, ignition))
