from __future__ import annotations

import os
import pathlib
import subprocess

HERE = pathlib.Path(__file__).absolute().parent


def top() -> pathlib.Path:
    """Return the directory holding Pulumi.yaml, i.e. the project checkout."""
    if "NLBTOPO_TOP" in os.environ:
        return pathlib.Path(os.environ["NLBTOPO_TOP"])

    return pathlib.Path(
        subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],  # noqa: S607
            text=True,
            capture_output=True,
            check=False,
        ).stdout.strip()
    )


class Paths:
    @property
    def root(self) -> pathlib.Path:
        """Return the deployments configuration directory.

        Raises:
            RuntimeError: If NLBTOPO_ROOT is not set in the environment

        """
        if "NLBTOPO_ROOT" not in os.environ:
            msg = "NLBTOPO_ROOT environment variable not set."
            raise RuntimeError(msg)

        return pathlib.Path(os.environ["NLBTOPO_ROOT"])

    @property
    def deployments(self) -> pathlib.Path:
        return self.root / "__deployments__"
