"""CLI entry point for the agent test orchestrator."""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from pydantic import SecretStr

from agent_orchestrator.agent.client import AgentClient
from agent_orchestrator.broadcast import Subscription, Topic
from agent_orchestrator.config import OrchestratorConfig
from agent_orchestrator.errors import OrchestratorError, StorageError, ValidationError
from agent_orchestrator.models.program import Program
from agent_orchestrator.models.submission import (
    FileTransferSubmission,
    OperationSubmission,
    Submission,
)
from agent_orchestrator.models.views import TestOutcome
from agent_orchestrator.program_loader import load_programs, register_programs
from agent_orchestrator.runtime import open_orchestrator

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INVALID = 2

STATUS_SYMBOLS = {
    "SUCCESS": "✅",
    "FAILED": "❌",
}

log = logging.getLogger("agent_orchestrator")


def find_program(programs: Sequence[Program], code: str) -> Program | None:
    """Return the program with the given code, ignoring case."""
    for program in programs:
        if program.code.lower() == code.lower():
            return program
    return None


def format_output(outcome: TestOutcome) -> dict[str, Any]:
    """Format a finished test for JSON output."""
    test, result = outcome.test, outcome.result
    return {
        "test_id": test.id,
        "program": test.program_code,
        "operation": test.operation_name,
        "environment": test.environment,
        "status": test.status.value,
        "success": result.success,
        "http_status": result.http_status,
        "duration_millis": result.duration_millis,
        "error_message": result.error_message,
        "response_body": result.response_body,
        "retrieved_file": test.retrieved_file,
        "duration": test.duration,
        "replay_of": test.replay_of,
    }


def log_outcome(outcome: TestOutcome) -> None:
    """Log a one-line summary of a finished test."""
    symbol = STATUS_SYMBOLS.get(outcome.test.status.value, "?")
    log.info(
        "%s %s: %s (%dms)",
        symbol,
        outcome.test.program_code,
        outcome.test.status,
        outcome.result.duration_millis,
    )
    if outcome.result.error_message:
        log.info("  Message: %s", outcome.result.error_message)
    if outcome.test.retrieved_file:
        log.info("  Retrieved file: %s", outcome.test.retrieved_file)


async def print_agent_logs(subscription: Subscription) -> None:
    """Forward the log lines relayed from the agent until cancelled."""
    async for notification in subscription:
        log.info("[agent] %s", notification.body.get("log", ""))


async def build_submission(
    args: argparse.Namespace, program: Program, deposit_name: str | None
) -> Submission:
    """Build the submission described by the command line."""
    if deposit_name is not None:
        return FileTransferSubmission(
            program_id=program.id,
            deposit_file=deposit_name,
            launched_by=args.launched_by,
        )

    if args.environment is None or args.operation is None:
        raise ValidationError("--environment and --operation are required")
    if args.request_body is None:
        raise ValidationError("--request-body is required")

    request_body = await asyncio.to_thread(
        args.request_body.read_text, encoding="utf-8"
    )
    return OperationSubmission(
        program_id=program.id,
        environment=args.environment,
        operation_name=args.operation,
        request_body=request_body,
        username=args.username,
        password=SecretStr(args.password) if args.password else None,
        timeout_millis=args.timeout_millis,
        launched_by=args.launched_by,
    )


async def run(args: argparse.Namespace) -> int:
    """Run one test to completion and return exit code."""
    config = OrchestratorConfig.model_validate_json(args.config)
    programs = await load_programs(args.programs)

    program = find_program(programs, args.program)
    if program is None:
        log.error("Unknown program: %s", args.program)
        return EXIT_INVALID

    async with open_orchestrator(config) as orchestrator:
        await register_programs(orchestrator.store, programs)
        controller = orchestrator.controller

        try:
            deposit_name = None
            if args.deposit_file is not None:
                content = await asyncio.to_thread(args.deposit_file.read_bytes)
                deposit_name = await orchestrator.uploads.store(
                    args.deposit_file.name, content
                )
            submission = await build_submission(args, program, deposit_name)
            receipt = await controller.submit(submission)
        except (ValidationError, StorageError) as e:
            log.error("Invalid submission: %s", e)
            return EXIT_INVALID

        log.info("Test %s submitted (%s)", receipt.test_id, receipt.message)
        logs = Topic.LOGS.destination(receipt.test_id)
        with orchestrator.broadcaster.subscribe(logs) as subscription:
            printer = asyncio.create_task(print_agent_logs(subscription))
            await controller.wait_for(receipt.test_id)
            printer.cancel()
            await asyncio.wait({printer})

    # Completion events are recorded once the orchestrator has stopped
    outcome = await controller.get_result(receipt.test_id)
    log_outcome(outcome)
    print(json.dumps(format_output(outcome), indent=2))

    return EXIT_SUCCESS if outcome.succeeded else EXIT_FAILURE


async def sync_operations(args: argparse.Namespace) -> int:
    """Refresh the operations of a program and return exit code."""
    config = OrchestratorConfig.model_validate_json(args.config)
    programs = await load_programs(args.programs)

    program = find_program(programs, args.program)
    if program is None:
        log.error("Unknown program: %s", args.program)
        return EXIT_INVALID

    async with open_orchestrator(config) as orchestrator:
        await register_programs(orchestrator.store, programs)
        try:
            synced = await orchestrator.programs.sync_operations(
                program.id, args.environment
            )
        except ValidationError as e:
            log.error("Cannot synchronize %s: %s", program.code, e)
            return EXIT_INVALID
        except OrchestratorError as e:
            log.error("Synchronization of %s failed: %s", program.code, e)
            return EXIT_FAILURE

    log.info("%d operation(s) found for %s", len(synced.operations), synced.code)
    output = {
        "program": synced.code,
        "environment": args.environment,
        "operations": list(synced.operations),
    }
    print(json.dumps(output, indent=2))
    return EXIT_SUCCESS


async def check_agent(args: argparse.Namespace) -> int:
    """Report whether the agent answers its health check."""
    config = OrchestratorConfig.model_validate_json(args.config)

    async with AgentClient.from_config(config.agent) as agent:
        available = await agent.is_available()

    log.info("Agent at %s is %s", config.agent.base_url, "up" if available else "down")
    print(json.dumps({"agent": config.agent.base_url, "available": available}))
    return EXIT_SUCCESS if available else EXIT_FAILURE


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with its subcommands."""
    parser = argparse.ArgumentParser(
        description="Run tests on a remote execution agent"
    )
    parser.add_argument(
        "--config",
        default="{}",
        help="JSON configuration of the orchestrator",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    run_parser = commands.add_parser("run", help="Run one test and wait for it")
    run_parser.add_argument(
        "--programs", type=Path, required=True, help="Path to the programs YAML file"
    )
    run_parser.add_argument("--program", required=True, help="Program code")
    run_parser.add_argument("--environment", help="Target environment")
    run_parser.add_argument("--operation", help="Operation to invoke")
    run_parser.add_argument(
        "--request-body", type=Path, help="File holding the SOAP request envelope"
    )
    run_parser.add_argument("--username", help="Service account user")
    run_parser.add_argument("--password", help="Service account password")
    run_parser.add_argument(
        "--timeout-millis", type=int, help="Agent call timeout in milliseconds"
    )
    run_parser.add_argument(
        "--deposit-file", type=Path, help="File to deposit for file-transfer programs"
    )
    run_parser.add_argument("--launched-by", help="User launching the test")
    run_parser.set_defaults(handler=run)

    sync_parser = commands.add_parser(
        "sync-operations", help="Refresh the operations of a program from its WSDL"
    )
    sync_parser.add_argument(
        "--programs", type=Path, required=True, help="Path to the programs YAML file"
    )
    sync_parser.add_argument("--program", required=True, help="Program code")
    sync_parser.add_argument("--environment", required=True, help="Environment")
    sync_parser.set_defaults(handler=sync_operations)

    check_parser = commands.add_parser("check-agent", help="Check agent availability")
    check_parser.set_defaults(handler=check_agent)

    return parser


def main() -> None:
    """CLI entry point."""
    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    exit_code = asyncio.run(args.handler(args))
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
