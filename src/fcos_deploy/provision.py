"""
Deployment pipelines for Fedora CoreOS VMs.

Each pipeline validates everything it can before touching the filesystem,
the network or a hypervisor, then stages secrets, transpiles the Butane
config and, when asked to, downloads the image and deploys it.
"""

import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from fcos_deploy import runner
from fcos_deploy.butane import Butane, compact_ignition, encode_ignition, write_artifact, write_plain
from fcos_deploy.govc import GovcClient
from fcos_deploy.image_manager import ImageManager
from fcos_deploy.models import (
    STATIC_CA_CERTS,
    DeployOptions,
    ImportOptions,
    ParameterError,
    RemoveOptions,
    StreamRelease,
    VMResources,
)
from fcos_deploy.ovftool import OvfTool
from fcos_deploy.ssh_keys import SSHKeyGenerator
from fcos_deploy.staging import IncludesStager
from fcos_deploy.vsphere import RemovalPlan, VSphereDeployer, VSphereRemover, vm_name

logger = logging.getLogger(__name__)

TRANSPILE_TOOLS = ["ssh-keygen", "butane"]


@dataclass
class DeployResult:
    """Outcome of a deploy pipeline."""

    vm: str
    deployed: bool
    release: Optional[StreamRelease] = None
    ignition_plain: Optional[Path] = None


def build_ignition(options: DeployOptions, stager: IncludesStager) -> Tuple[str, Path]:
    """
    Generate host keys, stage all includes and transpile the Butane file.

    Every file placed into includes/ is registered with the stager. The
    returned artifact is not, callers decide whether it outlives the run.

    Returns:
        The encoded Ignition document and the artifact file holding it
    """
    tree = options.tree
    name = options.hostname
    stager.prepare()

    keygen = SSHKeyGenerator(stager.ssh_dir)
    for key in keygen.generate_host_keys(name):
        stager.track(key)
        stager.track(key.with_name(key.name + ".pub"))

    if options.host_signing_key:
        signing_key = Path(options.host_signing_key).expanduser().resolve()
        for cert in keygen.sign_host_keys(name, signing_key, options.host_signing_pw):
            stager.track(cert)

    if options.user_signing_key:
        stager.stage_user_signing_key(Path(options.user_signing_key).expanduser().resolve())

    stager.stage_common()
    stager.stage_tls(options.tls_bundle)

    ignition = Butane.transpile(tree.bu_file, tree.includes)
    encoded = encode_ignition(ignition)
    artifact = write_artifact(encoded, tree.ignition_artifact(name))
    return encoded, artifact


def load_resources(options: DeployOptions) -> Optional[VMResources]:
    resources_file = options.tree.resources_file
    if not resources_file.is_file():
        return None
    return VMResources.from_file(resources_file)


def deploy_vsphere(options: DeployOptions) -> DeployResult:
    """
    Transpile the VM config and, with options.deploy, deploy it to vSphere.

    Without options.deploy the decoded Ignition config is written to
    <name>.ign.json for inspection and nothing leaves the machine.
    """
    options.validate()
    govc = GovcClient() if options.deploy else None
    runner.require_tools(TRANSPILE_TOOLS + (["gpg", "govc"] if options.deploy else []))
    resources = load_resources(options) if options.deploy else None

    tree = options.tree
    vm = vm_name(options.prefix, options.hostname)
    with IncludesStager(tree) as stager:
        encoded, artifact = build_ignition(options, stager)
        stager.track(artifact)

        if govc is None:
            plain = write_plain(encoded, tree.ignition_plain(options.hostname))
            return DeployResult(vm=vm, deployed=False, ignition_plain=plain)

        images = ImageManager(options.downloads, options.stream)
        release = images.acquire()
        logger.info("Ignition configuration transpiled and CoreOS Template downloaded; will now deploy to vCenter")

        VSphereDeployer(govc, options.library).deploy(
            release,
            release.ova_path(options.downloads),
            vm,
            artifact,
            resources=resources,
            debug=options.debug,
        )
        return DeployResult(vm=vm, deployed=True, release=release)


def deploy_fusion(options: DeployOptions) -> DeployResult:
    """Transpile the VM config and, with options.deploy, import it into VMware Fusion."""
    options.validate()
    runner.require_tools(TRANSPILE_TOOLS + (["gpg", "ovftool"] if options.deploy else []))

    tree = options.tree
    vm = f"{options.prefix}{options.hostname}"
    with IncludesStager(tree) as stager:
        encoded, artifact = build_ignition(options, stager)
        stager.track(artifact)

        if not options.deploy:
            plain = write_plain(encoded, tree.ignition_plain(options.hostname))
            return DeployResult(vm=vm, deployed=False, ignition_plain=plain)

        images = ImageManager(options.downloads, options.stream)
        release = images.acquire()
        logger.info("Ignition configuration transpiled and CoreOS Template downloaded; will now deploy to VMWare Fusion")

        library = Path(options.library).expanduser()
        OvfTool.deploy(release.ova_path(options.downloads), library, vm, options.hostname, encoded)
        return DeployResult(vm=vm, deployed=True, release=release)


def import_fusion(options: ImportOptions) -> DeployResult:
    """Deploy an already rendered Ignition JSON file to VMware Fusion."""
    options.validate()
    runner.require_tools(["gpg", "ovftool"])

    encoded = encode_ignition(compact_ignition(options.ign_path))
    downloads = options.downloads
    release = ImageManager(downloads, options.stream).acquire()

    OvfTool.deploy(release.ova_path(downloads), options.vm_path, options.hostname, options.hostname, encoded)
    return DeployResult(vm=options.hostname, deployed=True, release=release)


def remove_vsphere(options: RemoveOptions) -> RemovalPlan:
    """Show, and with options.apply carry out, the removal of a vSphere VM."""
    options.validate()
    govc = GovcClient()
    runner.require_tools(["govc"])
    return VSphereRemover(govc).remove(options.vm, apply=options.apply, keep_data=options.keep_data)


@dataclass
class CheckResult:
    """Artifacts produced by a Butane verification run."""

    name: str
    artifact: Path
    ignition_plain: Path
    removed: bool


class ConfigChecker:
    """
    Verifies that a Butane file transpiles with throwaway secrets.

    Placeholder TLS files, a host signing key and user keys are created in
    <bu_dir>/../tmp, which is removed afterwards together with any user key
    placed into the common config.
    """

    def __init__(self, bu_file: Optional[Path]) -> None:
        if not bu_file:
            raise ParameterError("Missing required parameter: bu-file")
        if not Path(bu_file).expanduser().is_file():
            raise ParameterError("Parameter 'bu-file' does not point to an existing location")
        self.name = f"{int(time.time())}_test"
        self.options = DeployOptions(name=self.name, bu_file=Path(bu_file))
        self.tree = self.options.tree
        self.placeholders: List[Path] = []

    def _prepare_tls(self) -> Path:
        tls = self.tree.tmp_dir / "tls"
        (tls / "certs").mkdir(parents=True, exist_ok=True)
        (tls / "private").mkdir(parents=True, exist_ok=True)
        for cert in STATIC_CA_CERTS + (f"{self.name}.cert.pem", f"{self.name}.cert-chain.pem"):
            (tls / "certs" / cert).touch()
        (tls / "private" / f"{self.name}.key.pem").touch()
        return tls

    def _prepare_user_keys(self) -> None:
        """Provide user public keys the common config references, unless real ones exist."""
        user_dir = self.tree.common / "user"
        for key_type in ("ed25519", "rsa"):
            target = user_dir / f"id_{key_type}.pub"
            if target.exists():
                continue
            key = SSHKeyGenerator.generate_keypair(self.tree.tmp_dir / f"user_{key_type}", "User Key", key_type)
            user_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(key.with_name(key.name + ".pub"), target)
            self.placeholders.append(target)

    def _remove_temporaries(self) -> None:
        for placeholder in self.placeholders:
            logger.debug(f"Removing placeholder '{placeholder}'")
            placeholder.unlink(missing_ok=True)
        if self.tree.tmp_dir.is_dir():
            logger.debug(f"Removing temporary directory '{self.tree.tmp_dir}'")
            shutil.rmtree(self.tree.tmp_dir, ignore_errors=True)

    def run(self, cleanup: bool = False) -> CheckResult:
        runner.require_tools(TRANSPILE_TOOLS)
        try:
            logger.info("Creating temporary directory and files for e.g. SSH keys")
            self.tree.tmp_dir.mkdir(parents=True, exist_ok=True)
            self.options.tls_certs = self._prepare_tls()
            self.options.download_dir = self.tree.tmp_dir

            logger.info("Creating temporary SSH Keys")
            self.options.host_signing_key = SSHKeyGenerator.generate_keypair(
                self.tree.tmp_dir / f"{self.name}_key", f"{self.name} Host Signing Key"
            )
            self._prepare_user_keys()
            self.options.validate()

            with IncludesStager(self.tree) as stager:
                encoded, artifact = build_ignition(self.options, stager)
            plain = write_plain(encoded, self.tree.ignition_plain(self.name))
        finally:
            self._remove_temporaries()

        if cleanup:
            for path in (artifact, plain):
                logger.debug(f"Removing Ignition file from '{path}'")
                path.unlink(missing_ok=True)
        return CheckResult(name=self.name, artifact=artifact, ignition_plain=plain, removed=cleanup)
