from __future__ import annotations

# Single-entrypoint runner.
#
#     python -m virtual_queue.app serve [--pending-ttl-minutes N]
#     python -m virtual_queue.app client join --business-id ID --name NAME --phone PHONE
#
# Each subcommand forwards its remaining arguments to the module that owns it,
# so `serve -h` and `client -h` show the full option lists.

import argparse


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Virtual Queue (MQTT) - main entrypoint")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("serve", help="Start the queue service", add_help=False)
    sub.add_parser("client", help="Join, inspect or drive a queue", add_help=False)

    args, rest = parser.parse_known_args(argv)

    if args.cmd == "serve":
        from .service import main as run
    else:
        from .client import main as run

    _dispatch_to_module_main(run, rest)


def _dispatch_to_module_main(module_main, argv: list[str]) -> None:
    import sys

    old_argv = sys.argv[:]
    try:
        sys.argv = [old_argv[0], *argv]
        module_main()
    finally:
        sys.argv = old_argv


if __name__ == "__main__":
    main()
