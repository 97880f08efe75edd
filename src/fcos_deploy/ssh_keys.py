"""SSH host key generation and signing through ssh-keygen."""

import logging
from pathlib import Path
from typing import List, Optional

from fcos_deploy import runner
from fcos_deploy.models import HostKeyType

logger = logging.getLogger(__name__)


class SSHKeyGenerator:
    """Creates fresh SSH host keys for a VM inside a directory of the includes tree."""

    def __init__(self, ssh_dir: Path) -> None:
        self.ssh_dir = ssh_dir

    @staticmethod
    def principals(name: str) -> str:
        return f"{name},{name}.local"

    def key_path(self, key_type: HostKeyType) -> Path:
        return self.ssh_dir / key_type.filename

    def generate_host_keys(self, name: str) -> List[Path]:
        """
        Generate ecdsa, ed25519 and rsa host keys for a VM.

        Keys left over from an earlier run are replaced, never reused.

        Args:
            name: VM name used in the key comment

        Returns:
            Paths of the private keys
        """
        logger.info("Creating SSH Host Keys")
        self.ssh_dir.mkdir(parents=True, exist_ok=True)

        keys = []
        for key_type in HostKeyType:
            path = self.key_path(key_type)
            for stale in (path, path.with_name(path.name + ".pub"), path.with_name(path.name + "-cert.pub")):
                stale.unlink(missing_ok=True)

            args = ["ssh-keygen", "-q", "-t", key_type.value]
            if key_type == HostKeyType.RSA:
                args += ["-b", "4096"]
            args += ["-N", "", "-f", str(path), "-C", self.principals(name)]
            runner.run(args)
            keys.append(path)
        return keys

    def sign_host_keys(self, name: str, signing_key: Path, password: Optional[str] = None) -> List[Path]:
        """
        Sign the host keys with the SSH host CA, producing *-cert.pub files.

        Args:
            name: VM name, used for identity and principals
            signing_key: Private key of the host CA
            password: Passphrase of the CA key, if it has one

        Returns:
            Paths of the created certificates
        """
        logger.info("Creating signed SSH certificates")
        args = ["ssh-keygen", "-q", "-s", str(signing_key), "-t", "rsa-sha2-512"]
        if password:
            args += ["-P", password]
        args += [
            "-I",
            f"{name} host key",
            "-n",
            self.principals(name),
            "-V",
            "-5m:+3650d",
            "-h",
        ]
        keys = [self.key_path(key_type) for key_type in HostKeyType]
        args += [str(key) for key in keys]
        runner.run(args)
        return [key.with_name(key.name + "-cert.pub") for key in keys]

    @staticmethod
    def generate_keypair(path: Path, comment: str, key_type: str = "rsa") -> Path:
        """Generate an unprotected key pair, used for throwaway CA and user keys."""
        args = ["ssh-keygen", "-q", "-t", key_type]
        if key_type == "rsa":
            args += ["-b", "4096"]
        args += ["-N", "", "-f", str(path), "-C", comment]
        runner.run(args)
        return path
