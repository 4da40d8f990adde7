"""``loom`` console script."""

from __future__ import annotations

import sys
from typing import Sequence

import typer

from apps.loom.app import app
from apps.loom.utils.errors import ExitCode, LoomError


def main(argv: Sequence[str] | None = None) -> int:
    """Run the CLI and translate Loom errors into exit codes."""

    args = list(argv) if argv is not None else None
    try:
        app(args=args, standalone_mode=False)
    except LoomError as exc:
        for line in exc.describe():
            typer.secho(line, fg=typer.colors.RED, err=True)
        return int(exc.exit_code)
    except (KeyboardInterrupt, typer.Abort):
        # Click turns Ctrl-C into Abort; asyncio.run has already cancelled the render.
        typer.secho("Interrupted", fg=typer.colors.YELLOW, err=True)
        return int(ExitCode.INTERRUPTED)
    return int(ExitCode.SUCCESS)


if __name__ == "__main__":
    sys.exit(main())
