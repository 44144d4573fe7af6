"""
Entry point for running sopguard as a module.

Usage:
    python -m sopguard hook PreToolUse < payload.json    # Evaluate a hook event
    python -m sopguard loop status                       # Task loop commands
    python -m sopguard breaker reset                     # Admin commands

The ``sopguard`` console script points here as well.
"""

import sys


def main(argv=None):
    """Main entry point with subcommand support."""
    argv = list(sys.argv[1:] if argv is None else argv)

    if argv:
        cmd = argv[0].lower()

        if cmd == "hook":
            from sopguard.cli.hook_cli import main as hook_main
            return hook_main(argv[1:])

        elif cmd == "loop":
            from sopguard.cli.loop_cli import main as loop_main
            return loop_main(argv[1:])

    # Default: admin commands (breaker, research, requirements, enforcement, audit)
    from sopguard.cli.admin_cli import main as admin_main
    return admin_main(argv)


if __name__ == "__main__":
    sys.exit(main())
