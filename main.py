"""sshcomm — entry point.

Hands the command line to the Typer application, which configures logging
and dispatches to the ``run``, ``upload`` and ``download`` commands and
the ``host`` and ``config`` groups.
"""

from __future__ import annotations

from sshcomm.cli import app


def main() -> None:
    """Run the sshcomm command-line interface."""
    app(prog_name="sshcomm")


if __name__ == "__main__":
    main()
