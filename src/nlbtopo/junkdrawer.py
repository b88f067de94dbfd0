from __future__ import annotations

import hashlib
import json
import typing

import click


def print_steps(steps: list[tuple[str, typing.Any]]):
    click.secho(
        "∙ " + ("\n∙ ".join([name for name, _ in steps])) + "\n\n",
        fg="white",
        bold=True,
    )


def json_signature(obj: typing.Any) -> str:
    return hashlib.sha256(
        json.dumps(obj, sort_keys=True, default=str).encode(),
        usedforsecurity=False,
    ).hexdigest()


def dashify(domain: str) -> str:
    return domain.rstrip(".").replace(".", "-")


def is_within_domain(name: str, domain: str) -> bool:
    name = name.rstrip(".").lower()
    domain = domain.rstrip(".").lower()

    return name == domain or name.endswith("." + domain)
