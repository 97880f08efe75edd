"""Wrapper around the govc CLI for vSphere operations."""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from fcos_deploy import runner
from fcos_deploy.config import Config
from fcos_deploy.models import CertificateTrustError, MissingCredentialsError

logger = logging.getLogger(__name__)


class GovcClient:
    """Runs govc commands against the vCenter configured through GOVC_* variables."""

    def __init__(self) -> None:
        missing = Config.missing_govc_credentials()
        if missing:
            raise MissingCredentialsError(f"Missing required environment variables: {', '.join(missing)}")
        self.overrides: Dict[str, str] = {}

    @property
    def env(self) -> Dict[str, str]:
        return Config.tool_environment(self.overrides)

    def _run(self, *args: str) -> None:
        runner.run(["govc", *args], env=self.env)

    def _probe(self, *args: str, quiet: bool = False) -> bool:
        return runner.probe(["govc", *args], env=self.env, quiet=quiet)

    def _output(self, *args: str) -> str:
        return runner.output(["govc", *args], env=self.env)

    # === TLS TRUST ===

    def ensure_trusted_certificate(self) -> None:
        """
        Make sure govc can verify the vCenter certificate.

        Falls back to ~/.govmomi/certificates/<GOVC_URL>.pem when govc does
        not trust the certificate on its own and GOVC_TLS_CA_CERTS is unset.

        Raises:
            CertificateTrustError: If no usable certificate can be found
        """
        if self._probe("about.cert"):
            return

        logger.warning("No valid certificate for govc found, will attempt to use 'GOVC_TLS_CA_CERTS'.")
        if Config.govc_tls_ca_certs():
            return

        logger.info("The environment variable 'GOVC_TLS_CA_CERTS' is not set.")
        cert = Config.govc_certificate_path()
        if not cert.is_file():
            cert_dir = cert.parent
            raise CertificateTrustError(
                f"No matching certificate found at '{cert}'.\n"
                "Please download the certificate using the following command and verify it:\n"
                f"\tmkdir -p '{cert_dir}/' && govc about.cert -k -show | tee '{cert}'"
            )

        logger.info(f"Found certificate at '{cert}', exporting it as required.")
        self.overrides["GOVC_TLS_CA_CERTS"] = str(cert)

    # === CONTENT LIBRARY ===

    def library_names(self, path: Optional[str] = None) -> List[str]:
        """List library (or library item) names, without their leading path."""
        args = ["library.ls"] + ([path] if path else [])
        return [line.rstrip("/").rsplit("/", 1)[-1] for line in self._output(*args).splitlines() if line.strip()]

    def library_exists(self, library: str) -> bool:
        return library in self.library_names()

    def library_item_exists(self, library: str, item: str) -> bool:
        return item in self.library_names(f"/{library}/*")

    def library_create(self, library: str) -> None:
        self._run("library.create", library)

    def library_import(self, library: str, item: str, ova: Path) -> None:
        self._run("library.import", "-n", item, library, str(ova))

    def library_deploy(self, library: str, item: str, vm: str) -> None:
        self._run("library.deploy", f"{library}/{item}", vm)

    # === VIRTUAL MACHINES ===

    def vm_set_extra_config(self, vm: str, key: str, value: str) -> None:
        self._run("vm.change", "-vm", vm, "-e", f"{key}={value}")

    def vm_set_extra_config_file(self, vm: str, key: str, path: Path) -> None:
        """Set an extra config value from a file, keeping large payloads off the command line."""
        self._run("vm.change", "-vm", vm, "-f", f"{key}={path}")

    def vm_set_cpu(self, vm: str, cores: int) -> None:
        self._run("vm.change", "-vm", vm, f"-c={cores}")

    def vm_set_memory(self, vm: str, memory_mb: int) -> None:
        self._run("vm.change", "-vm", vm, f"-m={memory_mb}")

    def vm_resize_disk(self, vm: str, file_path: str, size: str) -> None:
        self._run("vm.disk.change", "-vm", vm, f"-disk.filePath={file_path}", f"-size={size}")

    def vm_attach_disk(self, vm: str, disk: str) -> None:
        self._run(
            "vm.disk.attach",
            "-vm",
            vm,
            f"-disk={disk}",
            "-link=false",
            "-mode=independent_persistent",
            "-sharing=sharingNone",
        )

    def vm_info(self, vm: str) -> None:
        self._run("vm.info", "-e", vm)

    def vm_power_on(self, vm: str) -> None:
        self._run("vm.power", "-on", vm)

    def vm_power_off(self, vm: str) -> None:
        self._run("vm.power", "-off", vm)

    def vm_destroy(self, vm: str) -> None:
        self._run("vm.destroy", vm)

    # === DATASTORE ===

    def datastore_file_exists(self, path: str) -> bool:
        return self._probe("datastore.ls", path)

    def datastore_mkdir(self, path: str) -> None:
        self._run("datastore.mkdir", "-p", path)

    def datastore_disk_create(self, path: str, size: str) -> None:
        self._run("datastore.disk.create", "-size", size, path)

    # === DEVICES ===

    def device_info(self, vm: str, device: str) -> bool:
        return self._probe("device.info", "-vm", vm, device)

    def device_detach_keep(self, vm: str, device: str) -> bool:
        """Remove a disk device from the VM while keeping its backing file."""
        return self._probe("device.remove", "-vm", vm, "-keep", device)

    def serial_port_add(self, vm: str) -> None:
        self._run("device.serial.add", "-vm", vm)

    def serial_port_connect(self, vm: str, target: str) -> None:
        self._run("device.serial.connect", "-vm", vm, target)
