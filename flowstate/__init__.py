from .config import Config, get_config
from .exceptions import ErrorKind, FunctionDriftWarning, WorkflowError
from .function import FunctionRef, FunctionRegistry
from .operation import CachedValue, Operation
from .snapshot import (
    CacheSnapshot,
    FunctionSnapshot,
    OperationSnapshot,
    WorkflowSnapshot,
)
from .topology import Topology
from .workflow import EXHAUSTED, Validation, Workflow, WorkflowView

__all__ = [
    "EXHAUSTED",
    "CachedValue",
    "CacheSnapshot",
    "Config",
    "ErrorKind",
    "FunctionDriftWarning",
    "FunctionRef",
    "FunctionRegistry",
    "FunctionSnapshot",
    "Operation",
    "OperationSnapshot",
    "Topology",
    "Validation",
    "Workflow",
    "WorkflowError",
    "WorkflowSnapshot",
    "WorkflowView",
    "get_config",
]
