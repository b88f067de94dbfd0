"""
nlbtopo command line.

Exit codes: 0 on success, 1 when the deployment or its topology is invalid, 2 when provisioning
or an external precondition fails.
"""

from __future__ import annotations

import subprocess
import sys

import click
import yaml

import nlbtopo
import nlbtopo.deployment
import nlbtopo.graph
import nlbtopo.paths
import nlbtopo.shext
import nlbtopo.topology
import nlbtopo.validation
from nlbtopo.junkdrawer import print_steps
from nlbtopo.model import Topology

EXIT_INVALID = 1
EXIT_PROVISIONING = 2


def _fail(msg: str, code: int) -> None:
    click.secho(msg, fg="red", err=True)
    sys.exit(code)


def _load(name: str) -> tuple[nlbtopo.deployment.Deployment, Topology]:
    try:
        deployment = nlbtopo.deployment.Deployment(name)
        topology = nlbtopo.topology.build(deployment.cfg, deployment.read_boot_payload())
        nlbtopo.validation.validate(topology)
    except nlbtopo.StructuralError as e:
        _fail(str(e), EXIT_INVALID)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        _fail(f"cannot load deployment {name!r}: {e}", EXIT_INVALID)
    except RuntimeError as e:
        _fail(str(e), EXIT_INVALID)

    return deployment, topology


@click.group()
def cli() -> None:
    """Declare and provision a TLS-terminating network load balancer in front of an isolated instance."""


@cli.command()
@click.argument("name")
def validate(name: str) -> None:
    """Check the deployment NAME without touching any cloud API."""
    _, topology = _load(name)

    waves = nlbtopo.graph.creation_waves(topology)
    click.secho(f"{name}: {len(topology)} resources in {len(waves)} waves, valid", fg="green")


@cli.command()
@click.argument("name")
@click.option("--destroy", is_flag=True, help="Show the teardown order instead.")
def plan(name: str, destroy: bool) -> None:
    """Print the order in which NAME's resources are created (or destroyed)."""
    _, topology = _load(name)

    if destroy:
        steps = [(str(rid), rid) for rid in nlbtopo.graph.teardown_order(topology)]
    else:
        steps = [
            (f"[{i}] {rid}", rid) for i, wave in enumerate(nlbtopo.graph.creation_waves(topology)) for rid in wave
        ]

    print_steps(steps)


def _run_pulumi(command: str, name: str) -> None:
    _, ok = nlbtopo.aws_whoami()
    if not ok:
        _fail("no usable AWS credentials in the environment", EXIT_PROVISIONING)

    top = nlbtopo.paths.top()
    try:
        nlbtopo.shext.sh(["pulumi", "stack", "select", "--create", name], cwd=top)  # noqa: S607
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        _fail(f"cannot select stack {name!r}: {e}", EXIT_PROVISIONING)

    result = nlbtopo.shext.pulumi(
        command,
        name,
        cwd=top,
        extra_env={"NLBTOPO_ROOT": str(nlbtopo.paths.Paths().root)},
    )
    if result.returncode != 0:
        _fail(f"pulumi {command} failed for {name!r} (exit {result.returncode})", EXIT_PROVISIONING)


@cli.command()
@click.argument("name")
def up(name: str) -> None:
    """Validate NAME, then converge it with `pulumi up`."""
    _load(name)
    _run_pulumi("up", name)
    click.secho(f"{name}: converged", fg="green")


@cli.command()
@click.argument("name")
def destroy(name: str) -> None:
    """Tear NAME down with `pulumi destroy`."""
    _load(name)
    _run_pulumi("destroy", name)
    click.secho(f"{name}: destroyed", fg="green")


@cli.command()
@click.argument("name")
def nameservers(name: str) -> None:
    """Print the name servers the parent domain of NAME must delegate to."""
    deployment, topology = _load(name)
    zone = topology.zone

    servers, ok = nlbtopo.aws_route53_name_servers(zone.domain, region=deployment.cfg.region)
    if not ok:
        err = nlbtopo.ExternalStateError(
            zone.id, "no public hosted zone exists yet; run `nlbtopo up` first, then delegate to its name servers"
        )
        _fail(str(err), EXIT_PROVISIONING)

    for server in servers:
        click.echo(server)
