"""Download and verification of Fedora CoreOS OVA images."""

import hashlib
import json
import logging
from pathlib import Path

import requests

from fcos_deploy import runner
from fcos_deploy.config import Config
from fcos_deploy.models import CommandError, DownloadError, ManifestError, StreamRelease, VerificationError

logger = logging.getLogger(__name__)


class ImageManager:
    """Handles the CoreOS signing key, stream manifest and OVA in a download directory."""

    def __init__(self, download_dir: Path, stream: str = "stable") -> None:
        self.download_dir = download_dir
        self.stream = stream

    @property
    def signing_key(self) -> Path:
        """Armored Fedora signing key as published."""
        return self.download_dir / "fedora.asc"

    @property
    def keyring(self) -> Path:
        """Dearmored keyring gpg verifies against."""
        return self.download_dir / "fedora.gpg"

    @property
    def stream_manifest(self) -> Path:
        return self.download_dir / f"{self.stream}.json"

    @staticmethod
    def download(url: str, target: Path) -> Path:
        """Stream a URL to a file. The target only appears once the download is complete."""
        part = target.with_name(target.name + ".part")
        try:
            response = requests.get(url, stream=True)
            response.raise_for_status()
            with open(part, "wb") as f:
                for chunk in response.iter_content(chunk_size=Config.DOWNLOAD_CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
            part.replace(target)
        except requests.RequestException as e:
            raise DownloadError(f"Failed to download '{url}': {e}") from e
        finally:
            part.unlink(missing_ok=True)
        return target

    def prepare_download_dir(self) -> None:
        if not self.download_dir.is_dir():
            logger.info(f"Creating CoreOS Downloads Folder at '{self.download_dir}'")
            self.download_dir.mkdir(parents=True)

    def ensure_signing_key(self) -> Path:
        """Download and dearmor the Fedora signing key once."""
        if not self.signing_key.is_file():
            logger.info(f"Downloading the Fedora signing key to '{self.signing_key}'")
            self.download(Config.SIGNING_KEY_URL, self.signing_key)
        else:
            logger.debug(f"Signing key '{self.signing_key}' already exists locally. Skipping download.")

        if not self.keyring.is_file():
            runner.run(["gpg", "--batch", "--yes", "--output", str(self.keyring), "--dearmor", str(self.signing_key)])
        return self.keyring

    def fetch_release(self) -> StreamRelease:
        """Download the current stream manifest and describe its VMware OVA."""
        logger.info(f"Downloading stream json to '{self.stream_manifest}'")
        self.download(Config.stream_url(self.stream), self.stream_manifest)
        try:
            with open(self.stream_manifest) as f:
                manifest = json.load(f)
        except json.JSONDecodeError as e:
            raise ManifestError(f"Stream manifest '{self.stream_manifest}' is not valid JSON: {e}") from e

        release = StreamRelease.from_manifest(self.stream, manifest, Config.ARCHITECTURE)
        logger.info(f"Latest CoreOS Version for stream '{self.stream}' is '{release.version}'")
        return release

    def download_image(self, release: StreamRelease) -> Path:
        """Download the OVA and its signature unless this version is already present."""
        ova = release.ova_path(self.download_dir)
        signature = release.signature_path(self.download_dir)
        if ova.is_file() and signature.is_file():
            logger.info(f"OVA {ova.name} already exists locally. Skipping download.")
            return ova

        logger.info(f"Downloading CoreOS Version for stream '{self.stream}' with version '{release.version}'")
        # A present OVA always has its signature next to it
        self.download(release.signature, signature)
        self.download(release.location, ova)
        return ova

    def verify_signature(self, release: StreamRelease) -> None:
        ova = release.ova_path(self.download_dir)
        logger.info(f"Verifying signature for '{ova}'")
        try:
            runner.run(
                [
                    "gpg",
                    "--no-default-keyring",
                    "--keyring",
                    str(self.keyring),
                    "--verify",
                    str(release.signature_path(self.download_dir)),
                    str(ova),
                ]
            )
        except CommandError as e:
            raise VerificationError(f"Signature verification failed for '{ova}'") from e

    @staticmethod
    def sha256sum(path: Path) -> str:
        digest = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(1024 * 1024), b""):
                digest.update(chunk)
        return digest.hexdigest()

    def verify_checksum(self, release: StreamRelease) -> None:
        ova = release.ova_path(self.download_dir)
        logger.info(f"Verifying checksum for '{ova}'")
        actual = self.sha256sum(ova)
        if actual != release.sha256.lower():
            raise VerificationError(
                f"Checksum mismatch for '{ova}': expected {release.sha256}, got {actual}"
            )
        logger.info(f"{ova}: OK")

    def acquire(self) -> StreamRelease:
        """
        Make the latest verified OVA of the stream available locally.

        Returns:
            The release whose OVA is now present and verified

        Raises:
            DownloadError: If a download fails
            VerificationError: If signature or checksum do not match
        """
        self.prepare_download_dir()
        self.ensure_signing_key()
        release = self.fetch_release()
        self.download_image(release)
        self.verify_signature(release)
        self.verify_checksum(release)
        logger.info(f"Latest CoreOS image available at: {release.ova_path(self.download_dir)}")
        return release
