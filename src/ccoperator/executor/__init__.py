from ccoperator.executor.base import (
    EngineStatus,
    ExecutorFactory,
    OptimizationSummary,
    TaskExecutor,
    TaskResult,
)
from ccoperator.executor.cruisecontrol import (
    CruiseControlExecutor,
    cruise_control_executor_factory,
)

__all__ = [
    "CruiseControlExecutor",
    "EngineStatus",
    "ExecutorFactory",
    "OptimizationSummary",
    "TaskExecutor",
    "TaskResult",
    "cruise_control_executor_factory",
]
