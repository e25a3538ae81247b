"""``cronwarden-server``: run the API (and, unless disabled, the scheduler) under uvicorn."""

import argparse
import os


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cronwarden-server",
        description="Versioned scheduled-job definitions with gated deployments",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Bind port (default: 8080)")
    parser.add_argument(
        "--local",
        action="store_true",
        help="SQLite in the working directory, in-process collaborators, no Redis",
    )
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Serve the API only; another instance runs the scheduling loop",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        help="Override CRONWARDEN_LOG_LEVEL",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    # Settings are read from the environment when cronwarden.main is imported
    if args.local:
        os.environ["CRONWARDEN_LOCAL_MODE"] = "1"
    if args.no_scheduler:
        os.environ["CRONWARDEN_SCHEDULER_ENABLED"] = "0"
    if args.log_level:
        os.environ["CRONWARDEN_LOG_LEVEL"] = args.log_level

    import uvicorn

    uvicorn.run("cronwarden.main:app", host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
