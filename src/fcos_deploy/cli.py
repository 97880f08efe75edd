#!/usr/bin/env python3
"""
Fedora CoreOS deployment CLI.

Transpiles a Butane config with freshly generated host keys and staged TLS
certificates, then deploys a verified CoreOS OVA to vSphere or VMware Fusion:

    fcos-deploy deploy -n web -b vms/web/web.bu -d ~/coreos -t ~/ca --deploy
    fcos-deploy remove -n fcos-web --apply --keep-data
    fcos-deploy check -b vms/web/web.bu --cleanup
"""

import logging
import signal
from pathlib import Path
from types import FrameType
from typing import Any, Callable, NoReturn, Optional, TypeVar

import typer
from rich.console import Console

from fcos_deploy import provision
from fcos_deploy.config import Config
from fcos_deploy.models import DeployError, DeployOptions, ImportOptions, RemoveOptions

# Initialize CLI app and console
app = typer.Typer(
    name="fcos-deploy",
    help="Fedora CoreOS VM deployment for vSphere and VMware Fusion",
    add_completion=False,
)
console = Console(stderr=True)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)8s] %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

EXIT_SIGTERM = 143
EXIT_SIGINT = 130

T = TypeVar("T")


def _terminate(signum: int, frame: Optional[FrameType]) -> None:
    # Unwinds through the staging context managers so secrets get removed
    raise SystemExit(EXIT_SIGTERM)


def _setup(verbose: bool, no_color: bool) -> None:
    global console
    console = Console(stderr=True, no_color=no_color or Config.no_color())
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    signal.signal(signal.SIGTERM, _terminate)


def _fail(error: Exception) -> NoReturn:
    console.print(f"[red]{error}[/red]")
    raise typer.Exit(1)


def _run(func: Callable[..., T], *args: Any) -> T:
    """Run a pipeline, mapping failures and interrupts to exit codes."""
    try:
        return func(*args)
    except DeployError as e:
        logger.debug("Pipeline failed", exc_info=True)
        _fail(e)
    except KeyboardInterrupt:
        console.print("[red]Interrupted[/red]")
        raise typer.Exit(EXIT_SIGINT)


@app.command("deploy")
def deploy(
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Name of the VM to create"),
    bu_file: Optional[Path] = typer.Option(
        None, "--bu-file", "-b", help="Path to the bu config to use for provisioning"
    ),
    download_dir: Optional[Path] = typer.Option(
        None, "--download-dir", "-d", help="Path where CoreOS (images and files) should be stored locally"
    ),
    tls_certs: Optional[Path] = typer.Option(
        None,
        "--tls-certs",
        "-t",
        help="Path to the Certificate Authority from where to copy the '$name.cert.pem' and '$name.key.pem' files",
    ),
    host_signing_key: Optional[Path] = typer.Option(
        None, "--host-signing-key", "-g", help="Path to the SSH Host Signing Key"
    ),
    host_signing_pw: Optional[str] = typer.Option(
        None,
        "--host-signing-pw",
        "-i",
        help="Password for the SSH Host Signing Key, defaults to $SIMPLE_CA_SSH_PASSWORD",
    ),
    user_signing_key: Optional[Path] = typer.Option(
        None, "--user-signing-key", "-u", help="Path to the SSH User Signing Key"
    ),
    library: str = typer.Option("fcos", "--library", "-l", help="vSphere Library name to store template in"),
    prefix: str = typer.Option(
        "fcos", "--prefix", "-p", help="Prefix for the VM names for easier identification in vSphere"
    ),
    stream: str = typer.Option("stable", "--stream", "-s", help="CoreOS stream"),
    do_deploy: bool = typer.Option(
        False, "--deploy", "-o", help="Deploy the VM (requires GOVC_URL, GOVC_USERNAME, GOVC_PASSWORD)"
    ),
    debug: bool = typer.Option(
        False, "--debug", "-e", help="Enable extra debugging of the VM via Serial Connection logging"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print debug info"),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
) -> None:
    """Deploy a FCOS VM to vSphere using the provided Butane configuration."""
    _setup(verbose, no_color)
    options = DeployOptions(
        name=name,
        bu_file=bu_file,
        download_dir=download_dir,
        tls_certs=tls_certs,
        host_signing_key=host_signing_key,
        host_signing_pw=host_signing_pw or Config.host_signing_password(),
        user_signing_key=user_signing_key,
        library=library,
        prefix=prefix,
        stream=stream,
        deploy=do_deploy,
        debug=debug,
    )
    result = _run(provision.deploy_vsphere, options)

    if not result.deployed:
        console.print(f"✅ Ignition config written to {result.ignition_plain}")
        return

    console.print(f"✅ VM '{result.vm}' deployed from {result.release.image_name}")
    console.print(
        "[yellow]For security reasons the 'guestinfo.ignition.config.data' parameter "
        "should be removed once startup completes:[/yellow]"
    )
    console.print(f"govc vm.change -vm '{result.vm}' -e 'guestinfo.ignition.config.data='", markup=False)


@app.command("fusion")
def fusion(
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Name of the VM to create"),
    bu_file: Optional[Path] = typer.Option(
        None, "--bu-file", "-b", help="Path to the bu config to use for provisioning"
    ),
    download_dir: Optional[Path] = typer.Option(
        None, "--download-dir", "-d", help="Path where CoreOS (images and files) should be stored locally"
    ),
    tls_certs: Optional[Path] = typer.Option(
        None,
        "--tls-certs",
        "-t",
        help="Path to the Certificate Authority from where to copy the '$name.cert.pem' and '$name.key.pem' files",
    ),
    host_signing_key: Optional[Path] = typer.Option(
        None, "--host-signing-key", "-g", help="Path to the SSH Host Signing Key"
    ),
    host_signing_pw: Optional[str] = typer.Option(
        None,
        "--host-signing-pw",
        "-i",
        help="Password for the SSH Host Signing Key, defaults to $SIMPLE_CA_SSH_PASSWORD",
    ),
    user_signing_key: Optional[Path] = typer.Option(
        None, "--user-signing-key", "-u", help="Path to the SSH User Signing Key"
    ),
    library: Optional[Path] = typer.Option(
        None, "--library", "-l", help="VMware Fusion folder to store the VM in"
    ),
    prefix: str = typer.Option("fcos-", "--prefix", "-p", help="Prefix for the VM names in VMware Fusion"),
    stream: str = typer.Option("stable", "--stream", "-s", help="CoreOS stream"),
    do_deploy: bool = typer.Option(False, "--deploy", "-o", help="Deploy the VM"),
    debug: bool = typer.Option(False, "--debug", "-e", help="Show how to enable serial port logging"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print debug info"),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
) -> None:
    """Deploy a FCOS VM to VMware Fusion using the provided Butane configuration."""
    _setup(verbose, no_color)
    options = DeployOptions(
        name=name,
        bu_file=bu_file,
        download_dir=download_dir,
        tls_certs=tls_certs,
        host_signing_key=host_signing_key,
        host_signing_pw=host_signing_pw or Config.host_signing_password(),
        user_signing_key=user_signing_key,
        library=str(library or Config.fusion_library()),
        prefix=prefix,
        stream=stream,
        deploy=do_deploy,
        debug=debug,
    )
    result = _run(provision.deploy_fusion, options)

    if not result.deployed:
        console.print(f"✅ Ignition config written to {result.ignition_plain}")
        return

    if debug:
        console.print(
            "[yellow]To enable VM debugging 'Add Device' and choose 'Serial Port' "
            "and select path where to save the log file.[/yellow]"
        )
    console.print("[green]To finalize the VM setup open the VMWare Fusion UI and update the desired settings.[/green]")


@app.command("fusion-import")
def fusion_import(
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Name of the VM to create"),
    ign_file: Optional[Path] = typer.Option(None, "--ign-file", "-i", help="Path to Ignition Config"),
    vm_dir: Optional[Path] = typer.Option(None, "--vm-dir", "-m", help="Path to the VM storage"),
    download_dir: Optional[Path] = typer.Option(
        None, "--download-dir", "-d", help="Path where CoreOS (images and files) should be stored locally"
    ),
    stream: str = typer.Option("stable", "--stream", "-s", help="CoreOS stream"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print debug info"),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
) -> None:
    """Deploy a FCOS VM to VMware Fusion using an existing Ignition config."""
    _setup(verbose, no_color)
    options = ImportOptions(name=name, ign_file=ign_file, vm_dir=vm_dir, download_dir=download_dir, stream=stream)
    result = _run(provision.import_fusion, options)
    console.print(f"✅ VM '{result.vm}' deployed from {result.release.image_name}")


@app.command("remove")
def remove(
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Name of the VM to delete"),
    apply: bool = typer.Option(
        False, "--apply", "-a", help="Apply removal as described in the dry-run"
    ),
    keep_data: bool = typer.Option(
        False, "--keep-data", "-k", help="Delete the VM but keep additional disks that were added"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print debug info"),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
) -> None:
    """Remove a VM from vSphere, keeping nothing by default. Dry run unless --apply is given."""
    _setup(verbose, no_color)
    options = RemoveOptions(name=name, apply=apply, keep_data=keep_data)
    plan = _run(provision.remove_vsphere, options)

    if keep_data:
        console.print(f"[green]Disks kept: {', '.join(plan.detached_disks or plan.present_disks) or 'none'}[/green]")
    elif plan.present_disks:
        console.print(f"[red]Disks removed with the VM: {', '.join(plan.present_disks)}[/red]")

    if plan.applied:
        console.print(f"[red]Removed VM '{plan.vm}'[/red]")
    else:
        console.print("[red]To continue re-run the command and add the '--apply' parameter[/red]")


@app.command("check")
def check(
    bu_file: Optional[Path] = typer.Option(
        None, "--bu-file", "-b", help="Path to the bu config to use for provisioning"
    ),
    cleanup: bool = typer.Option(False, "--cleanup", "-c", help="Cleanup the transpiled configs in the end"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Print debug info"),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
) -> None:
    """Verify that a Butane config transpiles, using throwaway keys and certificates."""
    _setup(verbose, no_color)

    def _check() -> provision.CheckResult:
        return provision.ConfigChecker(bu_file).run(cleanup=cleanup)

    result = _run(_check)
    if result.removed:
        console.print(f"✅ Butane config transpiles ({result.name})")
    else:
        console.print(f"✅ Butane config transpiles, see {result.ignition_plain}")


if __name__ == "__main__":
    app()
