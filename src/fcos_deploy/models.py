"""Data models and errors for Fedora CoreOS deployments."""

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, TypeVar


class HostKeyType(Enum):
    """SSH host key algorithms generated for every VM."""

    ECDSA = "ecdsa"
    ED25519 = "ed25519"
    RSA = "rsa"

    @property
    def filename(self) -> str:
        return f"ssh_host_{self.value}_key"


# CA certificates copied unchanged into includes/certs
STATIC_CA_CERTS = ("ca-chain.cert.pem", "ca.cert.pem", "ia.cert.pem")


@dataclass(frozen=True)
class ProvisioningTree:
    """Filesystem layout derived from the Butane file of a VM."""

    bu_file: Path

    @classmethod
    def from_bu_file(cls, bu_file: Path) -> "ProvisioningTree":
        return cls(bu_file=Path(bu_file).expanduser().resolve())

    @property
    def bu_dir(self) -> Path:
        return self.bu_file.parent

    @property
    def includes(self) -> Path:
        return self.bu_dir / "includes"

    @property
    def common(self) -> Path:
        return (self.bu_dir / ".." / "common").resolve()

    @property
    def resources_file(self) -> Path:
        return self.bu_dir / "resources.json"

    @property
    def tmp_dir(self) -> Path:
        return (self.bu_dir / ".." / "tmp").resolve()

    def ignition_artifact(self, name: str) -> Path:
        """Path of the gzip+base64 Ignition artifact for a VM."""
        return self.bu_dir / f"{name}.ign.gzip.b64"

    def ignition_plain(self, name: str) -> Path:
        """Path of the decoded, human readable Ignition file for a VM."""
        return self.bu_dir / f"{name}.ign.json"


@dataclass(frozen=True)
class TLSBundle:
    """TLS material issued by the certificate authority for one VM."""

    root: Path
    name: str

    def sources(self) -> Dict[Path, str]:
        """Map each source file to its name inside includes/certs."""
        files = {self.root / "certs" / cert: cert for cert in STATIC_CA_CERTS}
        files[self.root / "certs" / f"{self.name}.cert.pem"] = "app.cert.pem"
        files[self.root / "certs" / f"{self.name}.cert-chain.pem"] = "app.cert-chain.pem"
        files[self.root / "private" / f"{self.name}.key.pem"] = "app.key.pem"
        return files

    def missing(self) -> List[Path]:
        return [src for src in self.sources() if not src.is_file()]


@dataclass(frozen=True)
class StreamRelease:
    """The VMware OVA artifact of a CoreOS stream, as described by its stream manifest."""

    stream: str
    version: str
    location: str
    signature: str
    sha256: str

    @classmethod
    def from_manifest(cls, stream: str, manifest: Dict[str, Any], architecture: str = "x86_64") -> "StreamRelease":
        try:
            vmware = manifest["architectures"][architecture]["artifacts"]["vmware"]
            disk = vmware["formats"]["ova"]["disk"]
            return cls(
                stream=stream,
                version=vmware["release"],
                location=disk["location"],
                signature=disk["signature"],
                sha256=disk["sha256"],
            )
        except (KeyError, TypeError) as e:
            raise ManifestError(f"Stream manifest for '{stream}' has no VMware OVA entry ({e})") from e

    @property
    def image_name(self) -> str:
        """Name used for the downloaded files and the library item."""
        return f"coreos-{self.stream}-{self.version}"

    def ova_path(self, download_dir: Path) -> Path:
        return download_dir / f"{self.image_name}.ova"

    def signature_path(self, download_dir: Path) -> Path:
        return download_dir / f"{self.image_name}.sig"


@dataclass(frozen=True)
class PersistentDisk:
    """A data disk that outlives redeploys of its VM."""

    kind: str
    size: str

    def path(self, vm_name: str) -> str:
        """Datastore path of the disk, e.g. docker/fcos-web-docker.vmdk."""
        return f"{self.kind}/{vm_name}-{self.kind}.vmdk"


# Device slots the persistent disks occupy once attached after the root disk
PERSISTENT_DISK_SLOTS = ("disk-1000-1", "disk-1000-2")


@dataclass(frozen=True)
class VMResources:
    """Hardware overrides read from resources.json next to the Butane file."""

    cpu_cores: int
    ram: int
    root_disk: str
    docker_disk: str
    data_disk: str

    @classmethod
    def from_file(cls, path: Path) -> "VMResources":
        try:
            with open(path) as f:
                data = json.load(f)
            disks = data["disks"]
            return cls(
                cpu_cores=int(data["cpu_cores"]),
                ram=int(data["ram"]),
                root_disk=str(disks["root"]),
                docker_disk=str(disks["docker"]),
                data_disk=str(disks["data"]),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise ParameterError(f"Invalid resource config '{path}': {e}") from e

    @property
    def persistent_disks(self) -> List[PersistentDisk]:
        return [PersistentDisk("docker", self.docker_disk), PersistentDisk("data", self.data_disk)]


T = TypeVar("T")


def required(value: Optional[T], flag: str) -> T:
    """Return a parameter value, raising ParameterError when it was not given."""
    if not value:
        raise ParameterError(f"Missing required parameter: {flag}")
    return value


@dataclass
class DeployOptions:
    """Parameters shared by the vSphere and Fusion deploy flows."""

    name: Optional[str] = None
    bu_file: Optional[Path] = None
    download_dir: Optional[Path] = None
    tls_certs: Optional[Path] = None
    host_signing_key: Optional[Path] = None
    host_signing_pw: Optional[str] = None
    user_signing_key: Optional[Path] = None
    library: str = "fcos"
    prefix: str = "fcos"
    stream: str = "stable"
    deploy: bool = False
    debug: bool = False

    def validate(self) -> None:
        """Check required parameters and referenced files, raising ParameterError."""
        required(self.download_dir, "download-dir")
        required(self.name, "name")
        required(self.bu_file, "bu-file")
        required(self.tls_certs, "tls-certs")

        if not self.tree.bu_file.is_file():
            raise ParameterError("Parameter 'bu-file' does not point to an existing location")
        for flag, key in (("host-signing-key", self.host_signing_key), ("user-signing-key", self.user_signing_key)):
            if key and not Path(key).expanduser().is_file():
                raise ParameterError(f"Parameter '{flag}' does not point to an existing SSH key file")
        if not self.tls_bundle.root.is_dir():
            raise ParameterError("Parameter 'tls-certs' does not point to an existing location")

        missing = self.tls_bundle.missing()
        if missing:
            raise ParameterError(
                "Parameter 'tls-certs' is missing certificate files: " + ", ".join(str(p) for p in missing)
            )

    @property
    def hostname(self) -> str:
        return required(self.name, "name")

    @property
    def tree(self) -> ProvisioningTree:
        return ProvisioningTree.from_bu_file(required(self.bu_file, "bu-file"))

    @property
    def tls_bundle(self) -> TLSBundle:
        root = Path(required(self.tls_certs, "tls-certs")).expanduser().resolve()
        return TLSBundle(root=root, name=self.hostname)

    @property
    def downloads(self) -> Path:
        return Path(required(self.download_dir, "download-dir")).expanduser().resolve()


@dataclass
class RemoveOptions:
    """Parameters of the removal flow."""

    name: Optional[str] = None
    apply: bool = False
    keep_data: bool = False

    def validate(self) -> None:
        required(self.name, "name")

    @property
    def vm(self) -> str:
        return required(self.name, "name")


@dataclass
class ImportOptions:
    """Parameters for deploying an existing Ignition file to VMware Fusion."""

    name: Optional[str] = None
    ign_file: Optional[Path] = None
    vm_dir: Optional[Path] = None
    download_dir: Optional[Path] = None
    stream: str = "stable"

    def validate(self) -> None:
        required(self.download_dir, "download-dir")
        required(self.ign_file, "ign-file")
        required(self.vm_dir, "vm-dir")
        required(self.name, "name")
        if not self.ign_path.is_file():
            raise ParameterError("Parameter 'ign-file' does not point to an existing file")

    @property
    def hostname(self) -> str:
        return required(self.name, "name")

    @property
    def ign_path(self) -> Path:
        return Path(required(self.ign_file, "ign-file")).expanduser()

    @property
    def vm_path(self) -> Path:
        return Path(required(self.vm_dir, "vm-dir")).expanduser().resolve()

    @property
    def downloads(self) -> Path:
        return Path(required(self.download_dir, "download-dir")).expanduser().resolve()


class DeployError(Exception):
    """Base exception for all deployment failures."""

    pass


class ParameterError(DeployError):
    """Raised when a required parameter is missing or invalid."""

    pass


class MissingCredentialsError(DeployError):
    """Raised when hypervisor credentials are not present in the environment."""

    pass


class ToolNotFoundError(DeployError):
    """Raised when a required external tool is not installed."""

    pass


class CommandError(DeployError):
    """Raised when an external tool exits with a non-zero status."""

    def __init__(self, command: List[str], returncode: int, stderr: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        message = f"Command '{command[0]}' failed with exit code {returncode}"
        if stderr:
            message += f": {stderr}"
        super().__init__(message)


class VerificationError(DeployError):
    """Raised when a downloaded image fails signature or checksum verification."""

    pass


class CertificateTrustError(DeployError):
    """Raised when govc cannot trust the vCenter certificate."""

    pass


class ManifestError(DeployError):
    """Raised when a CoreOS stream manifest cannot be interpreted."""

    pass


class DownloadError(DeployError):
    """Raised when a file cannot be downloaded."""

    pass
