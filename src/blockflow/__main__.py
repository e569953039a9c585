"""Command-line entry point.

    python -m blockflow run workflow.yaml [--state JSON] [--event JSON] [--max-steps N]
    python -m blockflow validate workflow.yaml
    python -m blockflow handlers

`run` prints the run response as JSON and exits 0 when the run completed or is
awaiting action, 1 otherwise. Logs go to stderr (level from BLOCKFLOW_LOG_LEVEL).
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any

from .engine import (
    EnvVarKeyResolver,
    Interpreter,
    InterpreterConfig,
    RunConfig,
    create_default_dispatcher,
    load_workflow_from_file,
)

logger = logging.getLogger("blockflow")

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def configure_logging() -> None:
    """Configure stderr logging from BLOCKFLOW_LOG_LEVEL (default INFO)."""
    log_level_str = os.getenv("BLOCKFLOW_LOG_LEVEL", "INFO").upper()
    if log_level_str not in VALID_LOG_LEVELS:
        print(
            f"Warning: Invalid BLOCKFLOW_LOG_LEVEL '{log_level_str}'. "
            f"Valid levels: {', '.join(sorted(VALID_LOG_LEVELS))}. "
            "Using INFO.",
            file=sys.stderr,
        )
        log_level_str = "INFO"

    logging.basicConfig(
        level=getattr(logging, log_level_str),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _json_object(text: str) -> dict[str, Any]:
    try:
        value = json.loads(text)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e}") from e
    if not isinstance(value, dict):
        raise argparse.ArgumentTypeError("expected a JSON object")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="blockflow", description="Workflow interpreter")
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Run a workflow and print the result as JSON")
    run.add_argument("workflow", help="Path to the workflow YAML file")
    run.add_argument("--state", type=_json_object, default={}, help="Initial state (JSON)")
    run.add_argument("--event", type=_json_object, default={}, help="Trigger event (JSON)")
    run.add_argument("--secrets", type=_json_object, default={}, help="Run secrets (JSON)")
    run.add_argument("--max-steps", type=int, default=None, help="Executed-step budget")

    validate = commands.add_parser("validate", help="Load and validate a workflow")
    validate.add_argument("workflow", help="Path to the workflow YAML file")

    commands.add_parser("handlers", help="List registered block handlers")
    return parser


async def run_workflow(args: argparse.Namespace) -> int:
    loaded = load_workflow_from_file(args.workflow)
    if not loaded.is_success or loaded.value is None:
        print(loaded.error, file=sys.stderr)
        return 1

    config = InterpreterConfig.from_env()
    if args.max_steps is not None:
        config = config.model_copy(update={"max_steps": max(1, args.max_steps)})

    run_config = RunConfig.for_workflow(
        loaded.value,
        initial_state=args.state,
        event=args.event,
        secrets=args.secrets,
        trigger_type="cli",
        key_resolver=EnvVarKeyResolver(),
    )
    result = await Interpreter(config=config).execute_run(run_config)

    print(json.dumps(result.to_response(), indent=2))
    return 0 if result.status.is_completed() or result.status.is_awaiting_action() else 1


def validate_workflow(args: argparse.Namespace) -> int:
    loaded = load_workflow_from_file(args.workflow)
    if not loaded.is_success or loaded.value is None:
        print(loaded.error, file=sys.stderr)
        return 1

    workflow = loaded.value
    dispatcher = create_default_dispatcher()
    defaults = InterpreterConfig()
    unknown = sorted(
        {
            block.type
            for block in workflow.blocks
            if not dispatcher.has_handler(block.type)
            and block.type != defaults.goto_type
            and not block.type.startswith(defaults.ui_type_prefix)
        }
    )
    print(
        f"Valid workflow '{workflow.id}' "
        f"(version {workflow.version}, {len(workflow.blocks)} blocks)"
    )
    if unknown:
        print(f"Note: no built-in handler for block types: {', '.join(unknown)}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Entry point for `python -m blockflow` and the `blockflow` script."""
    args = build_parser().parse_args(argv)
    configure_logging()

    try:
        if args.command == "run":
            exit_code = asyncio.run(run_workflow(args))
        elif args.command == "validate":
            exit_code = validate_workflow(args)
        else:
            print(json.dumps(create_default_dispatcher().describe(), indent=2))
            exit_code = 0
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, stopping")
        exit_code = 130

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
