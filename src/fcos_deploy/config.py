import os
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv


class Config:
    """Loads and manages configuration from environment variables."""

    load_dotenv()

    SIGNING_KEY_URL = os.getenv("FCOS_SIGNING_KEY_URL", "https://getfedora.org/static/fedora.gpg")
    # {stream} is replaced by the CoreOS stream name, e.g. "stable"
    STREAM_URL = os.getenv("FCOS_STREAM_URL", "https://builds.coreos.fedoraproject.org/streams/{stream}.json")
    ARCHITECTURE = os.getenv("FCOS_ARCHITECTURE", "x86_64")

    DOWNLOAD_CHUNK_SIZE = 8192

    GOVC_ENV_VARS = ("GOVC_URL", "GOVC_USERNAME", "GOVC_PASSWORD")

    @staticmethod
    def stream_url(stream: str) -> str:
        return Config.STREAM_URL.format(stream=stream)

    @staticmethod
    def missing_govc_credentials() -> List[str]:
        """Return the names of govc credential variables that are unset or empty."""
        return [var for var in Config.GOVC_ENV_VARS if not os.getenv(var)]

    @staticmethod
    def govc_url() -> str:
        return os.getenv("GOVC_URL", "")

    @staticmethod
    def govc_tls_ca_certs() -> Optional[str]:
        return os.getenv("GOVC_TLS_CA_CERTS") or None

    @staticmethod
    def govc_certificate_path() -> Path:
        """Conventional location of a manually trusted vCenter certificate."""
        return Path.home() / ".govmomi" / "certificates" / f"{Config.govc_url()}.pem"

    @staticmethod
    def datastore() -> str:
        """Datastore name used when addressing VM files, e.g. '[datastore] vm/vm.vmdk'."""
        return os.getenv("GOVC_DATASTORE", "datastore")

    @staticmethod
    def host_signing_password() -> Optional[str]:
        return os.getenv("SIMPLE_CA_SSH_PASSWORD") or None

    @staticmethod
    def no_color() -> bool:
        return bool(os.getenv("NO_COLOR")) or os.getenv("TERM") == "dumb"

    @staticmethod
    def fusion_library() -> Path:
        """Default VMware Fusion VM folder on macOS."""
        return Path.home() / "Virtual Machines.localized"

    @staticmethod
    def tool_environment(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Environment for external tools: the current one plus overrides."""
        env = dict(os.environ)
        if extra:
            env.update(extra)
        return env
