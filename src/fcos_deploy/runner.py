"""
Thin wrapper around subprocess for the external tools the deploy flows drive.

Every call is logged at DEBUG level so that ``--verbose`` traces the exact
command lines, and every non-zero exit is turned into a CommandError unless
the caller explicitly asks for a probe.
"""

import logging
import shlex
import shutil
import subprocess
from typing import Dict, Iterable, List, Optional, Union

from fcos_deploy.models import CommandError, ToolNotFoundError

logger = logging.getLogger(__name__)

# Arguments whose following value must not end up in logs
_SECRET_FLAGS = ("-P",)


def _redact(args: List[str]) -> str:
    shown = []
    hide_next = False
    for arg in args:
        if hide_next:
            shown.append("********")
            hide_next = False
            continue
        if arg in _SECRET_FLAGS:
            hide_next = True
        elif arg.startswith("--extraConfig:guestinfo.ignition.config.data="):
            arg = "--extraConfig:guestinfo.ignition.config.data=<ignition>"
        shown.append(arg)
    return shlex.join(shown)


def require_tools(tools: Iterable[str]) -> None:
    """
    Ensure all external tools are available on PATH.

    Raises:
        ToolNotFoundError: If any tool is missing
    """
    missing = [tool for tool in tools if shutil.which(tool) is None]
    if missing:
        raise ToolNotFoundError(f"Required tools not found on PATH: {', '.join(missing)}")


def run(
    args: List[str],
    capture: bool = False,
    input: Optional[Union[bytes, str]] = None,
    env: Optional[Dict[str, str]] = None,
) -> subprocess.CompletedProcess:
    """
    Run an external command to completion, aborting on failure.

    Args:
        args: Command and arguments
        capture: Capture stdout (as bytes) instead of passing it through
        input: Data written to the command's stdin
        env: Environment for the command, defaults to the current one

    Returns:
        The completed process

    Raises:
        ToolNotFoundError: If the executable does not exist
        CommandError: If the command exits non-zero
    """
    logger.debug(f"+ {_redact(args)}")
    if isinstance(input, str):
        input = input.encode()
    try:
        result = subprocess.run(
            args,
            input=input,
            stdout=subprocess.PIPE if capture else None,
            stderr=subprocess.PIPE if capture else None,
            env=env,
        )
    except FileNotFoundError as e:
        raise ToolNotFoundError(f"Required tool '{args[0]}' not found on PATH") from e

    if result.returncode != 0:
        stderr = result.stderr.decode(errors="replace").strip() if capture and result.stderr else ""
        raise CommandError(args, result.returncode, stderr)
    return result


def probe(args: List[str], env: Optional[Dict[str, str]] = None, quiet: bool = False) -> bool:
    """
    Run a command whose failure is an expected answer rather than an error.

    Returns:
        True if the command exited zero, False otherwise
    """
    logger.debug(f"+ {_redact(args)}")
    try:
        result = subprocess.run(
            args,
            stdout=subprocess.DEVNULL if quiet else None,
            stderr=subprocess.DEVNULL if quiet else None,
            env=env,
        )
    except FileNotFoundError as e:
        raise ToolNotFoundError(f"Required tool '{args[0]}' not found on PATH") from e
    return result.returncode == 0


def output(args: List[str], env: Optional[Dict[str, str]] = None) -> str:
    """Run a command and return its stdout as text."""
    return run(args, capture=True, env=env).stdout.decode().strip()
