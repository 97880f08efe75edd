#!/usr/bin/env python3
"""
vSphere VM lifecycle for Fedora CoreOS.

Handles:
- Content library creation and OVA import (skipped when already present)
- Instance deployment with the Ignition payload in guestinfo
- CPU, RAM and root disk overrides from resources.json
- Persistent docker/data disks that survive redeploys
- Removal, optionally detaching the persistent disks first

Persistent disks are only ever created or detached here, never deleted.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from fcos_deploy.butane import IGNITION_ENCODING
from fcos_deploy.config import Config
from fcos_deploy.govc import GovcClient
from fcos_deploy.models import PERSISTENT_DISK_SLOTS, StreamRelease, VMResources

logger = logging.getLogger(__name__)


def vm_name(prefix: str, name: str) -> str:
    """Instance name in vSphere, e.g. fcos-web."""
    return f"{prefix}-{name}" if prefix else name


class VSphereDeployer:
    """Deploys a verified CoreOS OVA as a configured, running VM."""

    def __init__(self, govc: GovcClient, library: str = "fcos") -> None:
        self.govc = govc
        self.library = library

    def ensure_library(self) -> None:
        if not self.govc.library_exists(self.library):
            logger.info(f"The library '{self.library}' does not exist in vCenter, creating it now")
            self.govc.library_create(self.library)

    def ensure_image(self, release: StreamRelease, ova: Path) -> None:
        """Import the OVA into the library unless an item of the same name exists."""
        if self.govc.library_item_exists(self.library, release.image_name):
            logger.info(f"Library item '{release.image_name}' already exists in '{self.library}'. Skipping import.")
            return
        logger.info(f"Uploading ova '{ova}' as '{release.image_name}' to vCenter library '{self.library}'")
        self.govc.library_import(self.library, release.image_name, ova)

    @staticmethod
    def _datastore_path(vm: str, filename: str) -> str:
        return f"[{Config.datastore()}] {vm}/{filename}"

    def apply_resources(self, vm: str, resources: VMResources) -> None:
        """Resize CPU, RAM and root disk, then attach the persistent disks."""
        logger.info("Resource config found; updating VM")
        logger.info("Updating CPU Cores")
        self.govc.vm_set_cpu(vm, resources.cpu_cores)
        logger.info("Updating RAM")
        self.govc.vm_set_memory(vm, resources.ram)
        logger.info("Resizing root disk")
        self.govc.vm_resize_disk(vm, self._datastore_path(vm, f"{vm}.vmdk"), resources.root_disk)

        for disk in resources.persistent_disks:
            path = disk.path(vm)
            if self.govc.datastore_file_exists(path):
                logger.info(f"{disk.kind.capitalize()} disk exists, continuing")
            else:
                logger.info(f"Creating {disk.kind} disk '{path}' with size {disk.size}")
                self.govc.datastore_mkdir(disk.kind)
                self.govc.datastore_disk_create(path, disk.size)

        # See https://github.com/vmware/govmomi/blob/master/govc/USAGE.md#vmdiskattach
        for disk in resources.persistent_disks:
            logger.info(f"Attaching {disk.kind} disk")
            self.govc.vm_attach_disk(vm, disk.path(vm))

    def enable_serial_log(self, vm: str) -> str:
        """Attach a serial port that logs boot and provisioning output to the datastore."""
        log_file = f"{vm}/{vm}.log"
        logger.info(f"Enabling VM debugging, check log file in vSphere Datastore at '{log_file}'")
        self.govc.serial_port_add(vm)
        self.govc.serial_port_connect(vm, self._datastore_path(vm, f"{vm}.log"))
        return log_file

    def deploy(
        self,
        release: StreamRelease,
        ova: Path,
        vm: str,
        ignition_file: Path,
        resources: Optional[VMResources] = None,
        debug: bool = False,
    ) -> None:
        """
        Import, configure and power on a CoreOS VM.

        Args:
            release: Verified stream release
            ova: Local path of the verified OVA
            vm: Instance name
            ignition_file: File holding the gzip+base64 Ignition document
            resources: Optional hardware overrides
            debug: Attach a serial port logger
        """
        self.govc.ensure_trusted_certificate()
        self.ensure_library()
        self.ensure_image(release, ova)

        logger.info(f"Deploying ova '{release.image_name}' as '{vm}'")
        self.govc.library_deploy(self.library, release.image_name, vm)
        self.govc.vm_set_extra_config(vm, "guestinfo.ignition.config.data.encoding", IGNITION_ENCODING)
        self.govc.vm_set_extra_config_file(vm, "guestinfo.ignition.config.data", ignition_file)

        if resources is not None:
            self.apply_resources(vm, resources)

        self.govc.vm_info(vm)

        if debug:
            self.enable_serial_log(vm)

        logger.info(f"Powering VM '{vm}' on")
        self.govc.vm_power_on(vm)


@dataclass
class RemovalPlan:
    """What a removal run did, for reporting."""

    vm: str
    applied: bool
    keep_data: bool
    present_disks: List[str]
    detached_disks: List[str]


class VSphereRemover:
    """Removes a VM, dry run unless applied."""

    def __init__(self, govc: GovcClient) -> None:
        self.govc = govc

    def show(self, vm: str) -> List[str]:
        """Display the VM and its persistent disk slots, returning the slots that exist."""
        self.govc.vm_info(vm)
        present = []
        for slot in PERSISTENT_DISK_SLOTS:
            if self.govc.device_info(vm, slot):
                present.append(slot)
            else:
                logger.info(f"{slot} doesn't exist, ignoring")
        return present

    def remove(self, vm: str, apply: bool = False, keep_data: bool = False) -> RemovalPlan:
        """
        Show the planned removal and, when applied, carry it out.

        Args:
            vm: Instance name
            apply: Perform the removal, otherwise only display it
            keep_data: Detach the persistent disks instead of destroying them with the VM

        Returns:
            RemovalPlan describing the outcome
        """
        self.govc.ensure_trusted_certificate()
        logger.info("The following VM is planned for removal, please check carefully")
        present = self.show(vm)
        plan = RemovalPlan(vm=vm, applied=apply, keep_data=keep_data, present_disks=present, detached_disks=[])
        if not apply:
            return plan

        logger.info(f"Powering VM '{vm}' off")
        self.govc.vm_power_off(vm)

        if keep_data:
            logger.info("Detaching disks to keep")
            for slot in PERSISTENT_DISK_SLOTS:
                if self.govc.device_detach_keep(vm, slot):
                    plan.detached_disks.append(slot)
                else:
                    logger.info(f"{slot} doesn't exist, ignoring")
            logger.info("Showing remaining disks that will be removed")
            self.govc.device_info(vm, "disk-*")

        logger.info(f"Removing the VM '{vm}'")
        self.govc.vm_destroy(vm)
        return plan
