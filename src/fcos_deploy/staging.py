"""
Temporary staging of secrets and shared config into a provisioning tree.

Butane resolves local file references against the ``includes`` directory, so
host keys, TLS certificates and the shared common config have to be placed
there before transpiling. None of it may stay behind: IncludesStager is a
context manager that removes everything it staged when the block exits,
whether it completes, raises or is interrupted.
"""

import logging
import shutil
from pathlib import Path
from typing import Any, List

from fcos_deploy.models import STATIC_CA_CERTS, ProvisioningTree, TLSBundle

logger = logging.getLogger(__name__)


class IncludesStager:
    """Copies files into includes/ and guarantees their removal."""

    def __init__(self, tree: ProvisioningTree) -> None:
        self.tree = tree
        self.staged: List[Path] = []
        self.created_dirs: List[Path] = []

    def __enter__(self) -> "IncludesStager":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.cleanup()

    @property
    def includes(self) -> Path:
        return self.tree.includes

    @property
    def ssh_dir(self) -> Path:
        return self.includes / "ssh"

    @property
    def certs_dir(self) -> Path:
        return self.includes / "certs"

    def track(self, path: Path) -> Path:
        """Register a file created elsewhere for removal on exit."""
        self.staged.append(path)
        return path

    def _ensure_dir(self, path: Path) -> None:
        missing = []
        current = path
        while not current.exists():
            missing.append(current)
            current = current.parent
        path.mkdir(parents=True, exist_ok=True)
        self.created_dirs.extend(reversed(missing))

    def _copy(self, src: Path, dest: Path) -> Path:
        self._ensure_dir(dest.parent)
        shutil.copy2(src, dest)
        return self.track(dest)

    def prepare(self) -> None:
        """Create the ssh and certs directories if the tree does not ship them."""
        self._ensure_dir(self.ssh_dir)
        self._ensure_dir(self.certs_dir)

    def stage_common(self) -> List[Path]:
        """Merge the shared common config into includes/."""
        common = self.tree.common
        if not common.is_dir():
            logger.warning(f"No common config found at '{common}', skipping")
            return []

        logger.info(f"Temporarily copying common config from '{common}' to '{self.includes}'")
        copied = []
        for src in sorted(common.rglob("*")):
            if src.is_dir():
                continue
            copied.append(self._copy(src, self.includes / src.relative_to(common)))
        return copied

    def stage_tls(self, bundle: TLSBundle) -> List[Path]:
        """Copy the CA chain and the VM certificate and key, renaming the latter to app.*."""
        logger.info(f"Temporarily copying certificates from '{bundle.root}' to '{self.includes}'")
        return [self._copy(src, self.certs_dir / target) for src, target in bundle.sources().items()]

    def stage_user_signing_key(self, key: Path) -> Path:
        """Copy the SSH user CA public key so sshd can trust user certificates."""
        logger.info(f"Temporarily copying SSH user signing certificate from '{key}' to '{self.ssh_dir}'")
        return self._copy(key, self.ssh_dir / key.name)

    def _leftovers(self) -> List[Path]:
        """Secret files matching the staging naming scheme, including ones from aborted runs."""
        found = list(self.ssh_dir.glob("ssh_host_*")) + list(self.certs_dir.glob("app*"))
        found += [self.certs_dir / cert for cert in STATIC_CA_CERTS]
        return found

    def cleanup(self) -> None:
        """Remove every staged file and any directory staging created."""
        for path in dict.fromkeys(self.staged + self._leftovers()):
            if not path.exists() and not path.is_symlink():
                continue
            logger.debug(f"Removing temporary file '{path}'")
            try:
                path.unlink()
            except OSError as e:
                logger.error(f"Failed to remove '{path}': {e}")

        for directory in reversed(self.created_dirs):
            try:
                directory.rmdir()
            except OSError:
                logger.debug(f"Keeping non-empty directory '{directory}'")

        self.staged = []
        self.created_dirs = []
