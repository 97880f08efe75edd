"""Butane to Ignition transpilation and the gzip+base64 Ignition encoding."""

import base64
import gzip
import json
import logging
from pathlib import Path
from typing import Any, Dict

from fcos_deploy import runner

logger = logging.getLogger(__name__)

IGNITION_ENCODING = "gzip+base64"


class Butane:
    """Runs the butane CLI against a provisioning tree."""

    @staticmethod
    def transpile(bu_file: Path, files_dir: Path) -> bytes:
        """
        Convert a Butane file to Ignition JSON.

        Args:
            bu_file: Butane source
            files_dir: Directory local file references are resolved against

        Returns:
            The Ignition document as emitted by butane
        """
        logger.info(f"Converting bu file '{bu_file}' to ign config")
        result = runner.run(
            ["butane", "--strict", f"--files-dir={files_dir}", str(bu_file)],
            capture=True,
        )
        return result.stdout


def encode_ignition(ignition: bytes) -> str:
    """Compress and base64 encode an Ignition document as a single line."""
    return base64.b64encode(gzip.compress(ignition)).decode("ascii")


def decode_ignition(encoded: str) -> Dict[str, Any]:
    """Reverse encode_ignition and parse the JSON document."""
    return json.loads(gzip.decompress(base64.b64decode(encoded.strip())))


def compact_ignition(path: Path) -> bytes:
    """Read an Ignition JSON file and re-serialize it without whitespace."""
    with open(path) as f:
        data = json.load(f)
    return json.dumps(data, separators=(",", ":")).encode()


def write_artifact(encoded: str, path: Path) -> Path:
    """Write the encoded Ignition document next to its Butane source."""
    path.write_text(encoded + "\n")
    return path


def write_plain(encoded: str, path: Path) -> Path:
    """Write the decoded Ignition document in readable form for inspection."""
    with open(path, "w") as f:
        json.dump(decode_ignition(encoded), f, indent=2)
        f.write("\n")
    logger.info(f"Wrote decoded Ignition config to '{path}'")
    return path
