from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from typing import Any, TypeVar

    T = TypeVar("T")


class ErrorKind(Enum):
    OPERATION_FAILED = "operation_failed"
    VALUE_VALIDATION_FAILED = "value_validation_failed"
    VALUE_NOT_COMPUTED = "value_not_computed"
    UNEXPECTED_EMPTY_VALUE = "unexpected_empty_value"
    FAILED_WORKFLOW_ACTION = "failed_workflow_action"
    FAILED_OPERATION_ACTION = "failed_operation_action"
    FAILED_FUNCTION_ACTION = "failed_function_action"
    SERIALIZATION_FAILED = "serialization_failed"


class WorkflowError(Exception):
    """
    The single error type raised by flowstate. The failure mode is carried by `kind`
    rather than by subclassing.
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        *,
        operation_id: str | None = None,
        error: BaseException | None = None,
        errors: list[dict[str, "Any"]] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.operation_id = operation_id
        self.error = error
        self.errors = errors or []

    def __repr__(self) -> str:
        return f"WorkflowError(kind={self.kind.name}, message={self.message!r})"


class FunctionDriftWarning(UserWarning):
    """A restored function no longer hashes to the value recorded in its snapshot."""


##
## OPERATIONS
##


def operation_failed(operation_id: str, error: BaseException) -> WorkflowError:
    return WorkflowError(
        f'operation "{operation_id}" failed: {error!r}',
        ErrorKind.OPERATION_FAILED,
        operation_id=operation_id,
        error=error,
    )


def value_not_computed(operation_id: str) -> WorkflowError:
    return WorkflowError(
        f'operation "{operation_id}" value has not been computed',
        ErrorKind.VALUE_NOT_COMPUTED,
        operation_id=operation_id,
    )


def failed_operation_action(message: str) -> WorkflowError:
    return WorkflowError(message, ErrorKind.FAILED_OPERATION_ACTION)


##
## WORKFLOWS
##


def failed_workflow_action(message: str) -> WorkflowError:
    return WorkflowError(message, ErrorKind.FAILED_WORKFLOW_ACTION)


def non_empty(value: "T | None", name: str = "unspecified") -> "T":
    """Return `value`, failing if an internal lookup unexpectedly came back empty."""
    if value is None:
        raise WorkflowError(
            f"unexpected empty value: {name}", ErrorKind.UNEXPECTED_EMPTY_VALUE
        )

    return value


##
## SERIALIZATION
##


def value_validation_failed(
    message: str, errors: list[dict[str, "Any"]]
) -> WorkflowError:
    details = "\n".join(
        f"  {'.'.join(str(loc) for loc in err.get('loc', ()))}: {err.get('msg')}"
        for err in errors
    )
    return WorkflowError(
        f"{message}\n{details}" if details else message,
        ErrorKind.VALUE_VALIDATION_FAILED,
        errors=errors,
    )


def serialization_failed(message: str) -> WorkflowError:
    return WorkflowError(message, ErrorKind.SERIALIZATION_FAILED)


def failed_function_action(message: str) -> WorkflowError:
    return WorkflowError(message, ErrorKind.FAILED_FUNCTION_ACTION)
