"""
__main__ provides the console-script entrypoint for the braid package.
"""
from __future__ import annotations

import sys
import traceback

from braid.cli import CLI
from braid.command import CheckCommand, InspectCommand
from braid.runner import Runner


def main(argv: list[str] | None = None) -> None:
    """
    main is the entrypoint for the `braid` console script.
    """
    try:
        command = CLI().parse_command(argv)

        match command:
            case CheckCommand() as c:
                Runner().check(c.manifest, save=c.save)
            case InspectCommand() as c:
                Runner().inspect(c.checkpoint)
            case _:
                raise ValueError(f"Invalid command payload: {type(command)!r}")
    except SystemExit as e:
        code = int(e.code) if isinstance(e.code, int) else 1
        if code == 0:
            raise
        sys.exit(code)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        print(f"details: {e!r}", file=sys.stderr)
        sys.exit(1)
    except RuntimeError as e:
        print("runtime error while running braid.", file=sys.stderr)
        print(f"details: {e!r}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"unexpected error: {type(e).__name__}: {e}", file=sys.stderr)
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
