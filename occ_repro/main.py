"""
Command line entry point.

Runs the lost-update scenario against the database named by the connection
string and reports whether the stale save was rejected.

Exit codes:
    0 - conflict detected
    1 - configuration, not found or backend failure
    2 - lost update reproduced
"""

import argparse
import asyncio
import sys
from typing import Sequence

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from occ_repro import __version__
from occ_repro.core.config import Settings, TokenSource, configure_logging, logger
from occ_repro.core.exceptions import ConfigurationError, OccReproError
from occ_repro.models.database import Database
from occ_repro.services.scenario import Outcome, run_parallel_scenario, run_scenario

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_LOST_UPDATE = 2


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="occ-repro",
        description="Check whether a stale save is rejected by optimistic concurrency control",
    )
    parser.add_argument(
        "connection_string",
        nargs="?",
        default=None,
        help="SQLAlchemy database URL (default: $OCC_REPRO__CONNECTION_STRING)",
    )
    parser.add_argument(
        "--token-source",
        choices=[source.value for source in TokenSource],
        default=None,
        help="Where the expected version token is taken from when saving",
    )
    parser.add_argument(
        "--parallel",
        action="store_true",
        help="Run concurrent editors instead of the sequential scenario",
    )
    parser.add_argument(
        "--editors",
        type=int,
        default=2,
        help="Number of concurrent editors for --parallel (default: 2)",
    )
    parser.add_argument(
        "--echo-sql",
        action="store_true",
        default=None,
        help="Log every SQL statement",
    )
    parser.add_argument("--log-level", default=None, help="Logging level")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def load_settings(args: argparse.Namespace) -> Settings:
    """
    Build settings from the environment overridden by command line arguments.

    Raises:
        ConfigurationError: If settings are invalid or no connection string is given
    """
    overrides = {
        "connection_string": args.connection_string,
        "token_source": args.token_source,
        "echo_sql": args.echo_sql,
        "log_level": args.log_level,
    }
    try:
        settings = Settings(**{key: value for key, value in overrides.items() if value is not None})
    except ValidationError as e:
        raise ConfigurationError("invalid settings", details={"errors": e.errors()}) from e

    if not settings.connection_string:
        raise ConfigurationError("connection string required")
    return settings


async def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        settings = load_settings(args)
    except ConfigurationError as e:
        print(e.message, file=sys.stderr)
        return EXIT_ERROR

    configure_logging(settings)

    try:
        database = Database(settings)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        print(e.message, file=sys.stderr)
        return EXIT_ERROR

    try:
        if args.parallel:
            parallel = await run_parallel_scenario(database, settings, editors=args.editors)
            outcome = parallel.outcome
            print(
                f"{parallel.saved} of {len(parallel.editors)} concurrent saves succeeded, "
                f"final phone {parallel.final_phone}"
            )
        else:
            result = await run_scenario(database, settings)
            outcome = result.outcome
            print(
                f"Second save: {outcome.value}; final phone {result.final_phone}, "
                f"token {result.original_token} -> {result.final_token}"
            )
    except (OccReproError, ValueError) as e:
        logger.error(f"Scenario failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except SQLAlchemyError as e:
        logger.error(f"Database error: {e}", exc_info=True)
        print(f"Database error: {e}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        await database.dispose()

    if outcome is Outcome.LOST_UPDATE:
        return EXIT_LOST_UPDATE
    return EXIT_OK


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
