"""
YAML workflow loader.

Reads workflow definitions from files, strings or whole directories and validates them
against WorkflowDefinition. Problems are returned as failed LoadResults whose message
starts with the source, e.g.:

    flows/intake.yaml: invalid workflow definition
      - blocks.1.type: Field required
"""

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .load_result import LoadResult
from .schema import WorkflowDefinition

logger = logging.getLogger(__name__)

WORKFLOW_SUFFIXES = (".yaml", ".yml")


def describe_validation_error(error: ValidationError) -> str:
    """Indented `- location: message` lines, one per schema problem."""
    problems = []
    for problem in error.errors():
        location = ".".join(str(part) for part in problem["loc"]) or "(root)"
        problems.append(f"  - {location}: {problem['msg']}")
    return "\n".join(problems)


def load_workflow_from_yaml(
    text: str, source: str = "<string>"
) -> LoadResult[WorkflowDefinition]:
    """
    Parse and validate one workflow document.

    Args:
        text: YAML document
        source: Label used as the prefix of error messages

    Example:
        loaded = load_workflow_from_yaml('''
        id: greet
        blocks:
          - id: b1
            name: hello
            type: code
            logic:
              code_source: state.greeting = "hello"
        ''')
        assert loaded.value.blocks[0].order == 0
    """
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        return LoadResult.failure(f"{source}: invalid YAML: {e}", source)

    if not isinstance(document, dict):
        kind = type(document).__name__
        return LoadResult.failure(
            f"{source}: expected a mapping at the top level, got {kind}", source
        )

    try:
        workflow = WorkflowDefinition.model_validate(document)
    except ValidationError as e:
        return LoadResult.failure(
            f"{source}: invalid workflow definition\n{describe_validation_error(e)}", source
        )

    logger.debug(f"Loaded workflow '{workflow.id}' v{workflow.version} from {source}")
    return LoadResult.success(workflow, source)


def load_workflow_from_file(path: str | Path) -> LoadResult[WorkflowDefinition]:
    """Read a workflow file and validate it (see load_workflow_from_yaml)."""
    source = str(path)
    file = Path(path)
    if not file.is_file():
        reason = "is not a file" if file.exists() else "does not exist"
        return LoadResult.failure(f"{source}: {reason}", source)

    try:
        text = file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return LoadResult.failure(f"{source}: cannot be read ({e})", source)

    return load_workflow_from_yaml(text, source)


def discover_workflows(directory: str | Path) -> LoadResult[list[WorkflowDefinition]]:
    """
    Load every workflow file (*.yaml, *.yml) directly inside `directory`.

    Files that fail to load do not fail the scan: they are logged and listed in
    `skipped`. Only a missing directory is a failure.
    """
    root = Path(directory)
    if not root.is_dir():
        return LoadResult.failure(f"{directory}: not a directory", str(directory))

    workflows: list[WorkflowDefinition] = []
    skipped: list[str] = []
    for file in sorted(root.iterdir()):
        if file.suffix not in WORKFLOW_SUFFIXES or not file.is_file():
            continue
        loaded = load_workflow_from_file(file)
        if loaded.value is not None:
            workflows.append(loaded.value)
        else:
            logger.warning(f"Skipping workflow file: {loaded.error}")
            skipped.append(loaded.error or file.name)

    logger.info(f"Discovered {len(workflows)} workflow(s) in {root} ({len(skipped)} skipped)")
    return LoadResult.success(workflows, str(directory), skipped)
