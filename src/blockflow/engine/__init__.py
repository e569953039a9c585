"""Workflow interpreter core.

Key Components:

- Interpreter: Orchestrator walking a block list (guards, jumps, pause/resume, limits)
- RunConfig / RunContext: What a run starts from and the state it threads through
- ContextResolver: `$state.x` references and `{{...}}` templates
- ConditionEvaluator: Block guards (all conditions must hold)
- BlockDispatcher: Handler registry and error strategy
- RunBookkeeper / Step: Step history and delta arithmetic
- RunResult: Terminal outcome with to_response() / to_checkpoint()
- CodeHandler: Sandboxed script blocks (see the sandbox package)
- Loader: YAML workflow definitions (LoadResult)
"""

from .block import REMOVED, Block, BlockResult, Condition, ConditionOperator
from .block_status import ErrorStrategy, RunStatus, StepStatus
from .bookkeeping import RunBookkeeper, Step, StepError, calculate_delta, merge_delta
from .checkpoint import PausedRun
from .conditions import ConditionEvaluator
from .config import InterpreterConfig
from .context import LoopCursor, RunContext, RunMetadata
from .exceptions import (
    BlockConfigurationError,
    BlockFailedError,
    MissingGotoTargetError,
    RunCancelledError,
    RunPaused,
    StepLimitExceededError,
    TimeLimitExceededError,
    UnknownBlockTypeError,
    UnknownGotoTargetError,
)
from .executor_base import (
    BlockDispatcher,
    BlockHandler,
    HandlerConfig,
    create_default_dispatcher,
)
from .executors_code import CodeConfig, CodeHandler
from .executors_flow import SleepConfig, SleepHandler
from .interpreter import CancellationToken, Interpreter
from .keys import EnvVarKeyResolver, KeyNotFoundError, KeyResolver, MappingKeyResolver
from .load_result import LoadResult
from .loader import discover_workflows, load_workflow_from_file, load_workflow_from_yaml
from .redaction import SecretRedactor
from .resolver import ContextResolver
from .run_result import RunResult
from .schema import RunConfig, WorkflowDefinition

__all__ = [
    # Data model
    "REMOVED",
    "Block",
    "BlockResult",
    "Condition",
    "ConditionOperator",
    "ErrorStrategy",
    "RunStatus",
    "StepStatus",
    # Context
    "LoopCursor",
    "RunContext",
    "RunMetadata",
    "ContextResolver",
    "ConditionEvaluator",
    # Keys
    "KeyResolver",
    "EnvVarKeyResolver",
    "MappingKeyResolver",
    "KeyNotFoundError",
    # Handlers
    "BlockDispatcher",
    "BlockHandler",
    "HandlerConfig",
    "create_default_dispatcher",
    "CodeConfig",
    "CodeHandler",
    "SleepConfig",
    "SleepHandler",
    # Orchestration
    "CancellationToken",
    "Interpreter",
    "InterpreterConfig",
    "RunBookkeeper",
    "Step",
    "StepError",
    "calculate_delta",
    "merge_delta",
    "RunResult",
    "PausedRun",
    "SecretRedactor",
    # Definitions
    "RunConfig",
    "WorkflowDefinition",
    "LoadResult",
    "discover_workflows",
    "load_workflow_from_file",
    "load_workflow_from_yaml",
    # Exceptions
    "BlockConfigurationError",
    "BlockFailedError",
    "MissingGotoTargetError",
    "RunCancelledError",
    "RunPaused",
    "StepLimitExceededError",
    "TimeLimitExceededError",
    "UnknownBlockTypeError",
    "UnknownGotoTargetError",
]
