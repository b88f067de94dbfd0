from __future__ import annotations

import functools
import os
import pathlib
import subprocess

sh = functools.partial(
    subprocess.run,
    check=True,
    capture_output=True,
    text=True,
)


def pulumi(
    command: str,
    stack: str,
    cwd: pathlib.Path,
    extra_env: dict[str, str] | None = None,
) -> subprocess.CompletedProcess:
    """Run `pulumi <command>` non-interactively against `stack`, streaming output to the terminal."""
    return subprocess.run(
        ["pulumi", command, "--stack", stack, "--yes", "--non-interactive"],  # noqa: S607
        cwd=cwd,
        env=os.environ | (extra_env or {}),
        check=False,
        text=True,
    )
