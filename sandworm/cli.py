"""
Command line interface for executing Dune queries.

Usage:
    sandworm sql "SELECT * FROM ethereum.transactions LIMIT 10"
    sandworm query 1215383 -p "address:text:0x1494ca1f11d487c2bbe4543e90080aeba4ba3c2b"
    sandworm status <execution_id>
    sandworm results <execution_id> --format csv > output.csv
    sandworm cancel <execution_id>

Environment:
    DUNE_API_KEY - Required. Get from https://dune.com/settings/api
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import TYPE_CHECKING, Any

from sandworm.client import DuneClient
from sandworm.models import DuneError, ExecutionResultCSV
from sandworm.types import ParameterType, QueryParameter

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sandworm.models import ResultsResponse


def parse_parameter(param_string: str) -> QueryParameter:
    """
    Parse a parameter string in format 'name:type:value'.

    Types: text, number, date, enum (anything else is sent as given)
    Examples:
        address:text:0x1494ca1f11d487c2bbe4543e90080aeba4ba3c2b
        days:number:30
        start:date:2024-01-01 00:00:00
    """
    parts = param_string.split(":", 2)
    if len(parts) != 3:  # noqa: PLR2004
        raise argparse.ArgumentTypeError(
            f"invalid parameter '{param_string}', expected 'name:type:value'"
        )
    name, type_str, value = parts
    p_type = ParameterType.from_string(type_str)
    if p_type == ParameterType.NUMBER:
        return QueryParameter.number_type(name, float(value) if "." in value else int(value))
    if p_type == ParameterType.DATE:
        return QueryParameter.date_type(name, value)
    if p_type == ParameterType.ENUM:
        return QueryParameter.enum_type(name, value)
    if p_type == ParameterType.TEXT:
        return QueryParameter.text_type(name, value)
    return QueryParameter(name, type_str, value)


def format_json(results: ResultsResponse) -> str:
    """Rows of a result as a JSON array"""
    return json.dumps(results.get_rows(), indent=2, default=str)


def format_csv(results: ExecutionResultCSV) -> str:
    """Raw CSV payload as text"""
    return results.data.getvalue().decode("utf-8")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sandworm",
        description="Execute Dune queries and fetch their results",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--format",
        "-f",
        choices=["json", "csv"],
        default="json",
        help="Output format of results (default: json)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Seconds to wait for the execution to finish (default: DUNE_API_EXECUTION_TIMEOUT)",
    )
    parser.add_argument(
        "--ping-frequency",
        type=float,
        help="Seconds between status checks (default: DUNE_API_PING_FREQUENCY)",
    )
    parser.add_argument(
        "--performance",
        choices=["medium", "large"],
        help="Performance tier of the execution engine",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    sql = commands.add_parser("sql", help="Execute ad-hoc SQL and wait for the results")
    sql.add_argument("query_sql", help="SQL statement to execute")

    query = commands.add_parser("query", help="Execute a saved query and wait for the results")
    query.add_argument("query_id", type=int, help="Dune query ID")
    query.add_argument(
        "--param",
        "-p",
        action="append",
        default=[],
        type=parse_parameter,
        help="Query parameter in format 'name:type:value'. Can be used multiple times",
    )

    for name, help_text in (
        ("status", "Show the status of an execution"),
        ("results", "Fetch the results of a finished execution"),
        ("cancel", "Cancel an execution"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("execution_id", help="Execution ID returned when the query started")

    return parser


def fetch_results(dune: DuneClient, job_id: str, args: argparse.Namespace) -> str:
    """Waits for `job_id` and renders its results in the requested format"""
    if args.format == "csv":
        return format_csv(
            dune.wait_for_results_csv(
                job_id, timeout=args.timeout, ping_frequency=args.ping_frequency
            )
        )
    return format_json(
        dune.wait_for_results(job_id, timeout=args.timeout, ping_frequency=args.ping_frequency)
    )


def run(dune: DuneClient, args: argparse.Namespace) -> str:
    """Executes the parsed command and returns what should be printed"""
    if args.command in ("sql", "query"):
        if args.command == "sql":
            job_id = dune.execute_sql(args.query_sql, performance=args.performance).execution_id
        else:
            job_id = dune.execute_query(
                args.query_id, params=args.param or None, performance=args.performance
            ).execution_id
        print(f"execution {job_id} started", file=sys.stderr)
        return fetch_results(dune, job_id, args)

    if args.command == "status":
        status = dune.get_execution_status(args.execution_id)
        payload: dict[str, Any] = {
            "execution_id": status.execution_id,
            "state": status.state.value,
            "submitted_at": status.times.submitted_at,
            "execution_started_at": status.times.execution_started_at,
            "execution_ended_at": status.times.execution_ended_at,
        }
        if status.error is not None:
            payload["error"] = status.error.message
        return json.dumps(payload, indent=2, default=str)

    if args.command == "cancel":
        cancelled = dune.cancel_execution(args.execution_id)
        return json.dumps({"execution_id": args.execution_id, "success": cancelled})

    return fetch_results(dune, args.execution_id, args)


def main(argv: Sequence[str] | None = None) -> int:
    """Console script entry point, returns the process exit code"""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        level=logging.DEBUG if args.verbose else logging.WARNING,
    )

    try:
        dune = DuneClient()
    except KeyError:
        print("Error: DUNE_API_KEY environment variable not set", file=sys.stderr)
        print("Get your API key from: https://dune.com/settings/api", file=sys.stderr)
        return 1
    except ValueError as err:
        print(f"Error: {err}", file=sys.stderr)
        return 1

    try:
        print(run(dune, args))
    except (DuneError, ValueError) as err:
        print(f"Error: {err}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
