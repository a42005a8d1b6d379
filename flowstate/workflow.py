"""
Workflow module for flowstate.

A Workflow is a directed acyclic graph of Operations with exactly one source and one
sink. It can be evaluated one step at a time, up to a given operation, or to
completion; snapshotted and restored; and synced against a revised definition while
keeping every cached result the revision did not affect.

Evaluation and `sync` must not run concurrently on the same Workflow. Operations on
unrelated branches may be evaluated concurrently.
"""

import logging
from collections.abc import Hashable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Generic, NamedTuple, TypeVar

import networkx as nx

from .exceptions import (
    WorkflowError,
    failed_workflow_action,
    non_empty,
    operation_failed,
    value_validation_failed,
)
from .function import ContextT, InputT, OutputT
from .operation import Operation
from .serialization import serializer
from .snapshot import WorkflowSnapshot
from .topology import Topology

if TYPE_CHECKING:  # pragma: no cover
    from .function import FunctionRegistry, OperationFn

logger = logging.getLogger(__name__)

H = TypeVar("H", bound=Hashable)


class _Sentinel(Enum):
    EXHAUSTED = "exhausted"

    def __repr__(self) -> str:
        return self.name


EXHAUSTED = _Sentinel.EXHAUSTED
"""Returned by `Workflow.step` when there is nothing left to evaluate."""


@dataclass(frozen=True, slots=True)
class Validation:
    ok: bool
    message: str | None = None

    def __bool__(self) -> bool:
        return self.ok


class WorkflowView(NamedTuple):
    operations: tuple[Operation[Any, Any, Any], ...]
    lookup: Mapping[str, Operation[Any, Any, Any]]
    graph: nx.DiGraph


def uniq(values: Sequence[H]) -> list[H]:
    """Remove duplicates, keeping the first occurrence of each value."""
    return list(dict.fromkeys(values))


def compute_required_to_node(nodes: list[str], topology: Topology, node: str) -> None:
    """
    Append to `nodes` every node that must be evaluated before `node` can be, by
    walking its in-edges transitively. Shared ancestors are appended once per path
    that reaches them; `nodes` is only ever used for membership tests.
    """
    if node not in topology:
        raise failed_workflow_action(f'unable to find in edges for node "{node}"')

    for source in topology.predecessors(node):
        nodes.append(source)
        compute_required_to_node(nodes, topology, source)


class Workflow(Generic[ContextT, InputT, OutputT]):
    def __init__(
        self,
        topology: Topology | None = None,
        operations: Sequence[Operation[Any, Any, Any]] | None = None,
    ) -> None:
        self._topology = topology if topology is not None else Topology()
        self._operations: list[Operation[Any, Any, Any]] = list(operations or ())
        self._lookup: dict[str, Operation[Any, Any, Any]] = {
            operation.id: operation for operation in self._operations
        }

    def __repr__(self) -> str:
        return f"Workflow(operations={[op.id for op in self._operations]!r})"

    def __str__(self) -> str:
        return str(self._topology)

    ##
    ## CONSTRUCTION
    ##

    def _register(
        self,
        operation_id: str,
        fn: "OperationFn[Any, Any, Any]",
        inputs: Sequence[Operation[Any, Any, Any]],
    ) -> Operation[Any, Any, Any]:
        # existence is checked against the graph only
        if operation_id in self._topology:
            raise failed_workflow_action(
                f'workflow graph node by id "{operation_id}" already exists'
            )

        operation = Operation(operation_id, fn)
        self._topology.add_node(operation_id)
        for input_operation in inputs:
            self._topology.add_edge(input_operation.id, operation_id)

        self._operations.append(operation)
        self._lookup[operation_id] = operation
        return operation

    def first(
        self, operation_id: str, fn: "OperationFn[ContextT, InputT, OutputT]"
    ) -> Operation[ContextT, InputT, OutputT]:
        """Add the source operation, the one that receives the workflow's input."""
        if operation_id not in self._topology and self._topology.sources():
            raise failed_workflow_action("workflow graph already has a source node")

        return self._register(operation_id, fn, ())

    def link(
        self,
        inputs: Sequence[Operation[Any, Any, Any]],
        operation_id: str,
        fn: "OperationFn[ContextT, Any, OutputT]",
    ) -> Operation[ContextT, Any, OutputT]:
        """
        Add an operation downstream of `inputs`. It is evaluated with a dict mapping
        each input operation's id to that operation's output.
        """
        return self._register(operation_id, fn, inputs)

    def last(
        self,
        inputs: Sequence[Operation[Any, Any, Any]],
        operation_id: str,
        fn: "OperationFn[ContextT, Any, OutputT]",
    ) -> Operation[ContextT, Any, OutputT]:
        """
        Add the sink operation. This behaves exactly like `link`; nothing stops further
        operations being appended after it, which `validate` will then reject for
        having more than one sink.
        """
        return self._register(operation_id, fn, inputs)

    ##
    ## VALIDATION
    ##

    def validate(self) -> Validation:
        """Check the workflow's structure, reporting the first problem found."""
        if len(self._topology.sources()) != 1:
            return Validation(False, "workflow graph must have exactly one source node")
        if len(self._topology.sinks()) != 1:
            return Validation(False, "workflow graph must have exactly one sink node")
        if not self._topology.is_acyclic():
            return Validation(False, "workflow graph must be acyclic")

        for operation in self._operations:
            if operation.id not in self._topology:
                return Validation(
                    False,
                    f'workflow is missing operation "{operation.id}" in its graph',
                )

        for node in self._topology:
            if node not in self._lookup:
                return Validation(
                    False,
                    f'failed to find operation "{node}" in the operation lookup',
                )

        operation_ids = [operation.id for operation in self._operations]
        if len(uniq(operation_ids)) != len(operation_ids):
            return Validation(False, "the workflow contains duplicate operations")

        return Validation(True)

    ##
    ## EVALUATION
    ##

    def _operation(self, operation_id: str) -> Operation[Any, Any, Any]:
        return non_empty(self._lookup.get(operation_id), operation_id)

    def _order(self) -> list[str]:
        try:
            return self._topology.order()
        except nx.NetworkXUnfeasible as e:
            raise failed_workflow_action("workflow graph must be acyclic") from e

    async def eval(
        self, operation_id: str, context: ContextT, input: InputT | None = None
    ) -> Any:
        """
        Evaluate exactly one operation. A source operation is fed `input`; any other
        operation is fed the outputs of its upstream operations, all of which must
        already be done. Structure is not validated here, see `run`.
        """
        if operation_id not in self._topology:
            raise failed_workflow_action(
                f'workflow graph does not have a node "{operation_id}"'
            )

        upstream_ids = self._topology.predecessors(operation_id)
        if not upstream_ids:
            if input is None:
                raise failed_workflow_action(
                    f'operation "{operation_id}" is the graph\'s source node but input'
                    " has not been provided"
                )

            operation_input: Any = input
        else:
            operation_input = {}
            for upstream_id in upstream_ids:
                upstream = self._operation(upstream_id)
                if not upstream.done:
                    raise failed_workflow_action(
                        f'input operation "{upstream.id}" has not been evaluated'
                    )

                operation_input[upstream.id] = upstream.value

        operation = self._operation(operation_id)
        try:
            return await operation.eval(context, operation_input)
        except Exception as e:
            raise operation_failed(operation_id, e) from e

    async def step(self, context: ContextT, input: InputT | None = None) -> Any:
        """
        Evaluate the next operation, in topological order, that is not done. Returns
        `EXHAUSTED` once every operation is done.

        The topological order is recomputed on every call, which makes this suitable
        for stepping through a workflow in tests rather than for running one.
        """
        for operation_id in self._order():
            if not self._operation(operation_id).done:
                return await self.eval(operation_id, context, input)

        return EXHAUSTED

    async def upto(
        self, operation_id: str | None, context: ContextT, input: InputT | None = None
    ) -> Any:
        """
        Evaluate every operation `operation_id` depends on, then `operation_id`
        itself, returning its output. `None` means the graph's sink.
        """
        if operation_id is None:
            sinks = self._topology.sinks()
            if len(sinks) != 1:
                raise failed_workflow_action(
                    "workflow graph does not have exactly one sink"
                )

            operation_id = sinks[0]

        required = [operation_id]
        compute_required_to_node(required, self._topology, operation_id)

        # every operation is evaluated (rather than skipped when done) so that a
        # changed input is caught by the operation's own input hash check
        output: Any = None
        for node in (node for node in self._order() if node in required):
            output = await self.eval(node, context, input)
            if node == operation_id:
                break

        return output

    async def run(self, context: ContextT, input: InputT) -> OutputT:
        """Validate the workflow and evaluate it through to its sink."""
        validation = self.validate()
        if not validation:
            raise failed_workflow_action(
                f"workflow is not valid: {validation.message}"
            )

        return await self.upto(None, context, input)

    def test(self, context: ContextT, input: InputT) -> bool:
        """
        Whether the source operation already holds a result for `input`. Every other
        operation's input derives from the source, so a match means running with
        `input` would not recompute anything upstream of an invalidated operation.
        """
        sources = self._topology.sources()
        if len(sources) != 1:
            raise failed_workflow_action(
                "workflow graph does not have exactly one source"
            )

        return self._operation(sources[0]).test(context, input)

    ##
    ## SERIALIZATION
    ##

    @classmethod
    def unmarshal(
        cls, data: "WorkflowSnapshot | dict[str, Any]", registry: "FunctionRegistry"
    ) -> "Workflow[Any, Any, Any]":
        snapshot = WorkflowSnapshot.check(data)

        try:
            topology = Topology.from_data(serializer.load(snapshot.graph))
        except (
            WorkflowError,
            nx.NetworkXError,
            AttributeError,
            KeyError,
            TypeError,
        ) as e:
            raise value_validation_failed(
                "invalid workflow graph data",
                [{"loc": ("graph",), "msg": str(e), "type": "value_error"}],
            ) from e

        return cls(
            topology=topology,
            operations=[
                Operation.unmarshal(operation, registry)
                for operation in snapshot.operations
            ],
        )

    def marshal(self) -> WorkflowSnapshot:
        return WorkflowSnapshot(
            graph=serializer.dump(self._topology.to_data()),
            operations=[operation.marshal() for operation in self._operations],
        )

    @property
    def registry(self) -> "FunctionRegistry":
        """The functions this workflow's operations need to be restored."""
        return {operation.func.id: operation.func.fn for operation in self._operations}

    def clone(self) -> "Workflow[ContextT, InputT, OutputT]":
        """A deep, independent copy made by marshalling and unmarshalling."""
        return type(self).unmarshal(self.marshal(), self.registry)

    ##
    ## SYNC
    ##

    def _copy(self) -> "Workflow[ContextT, InputT, OutputT]":
        return type(self)(
            topology=self._topology.copy(),
            operations=[operation._copy() for operation in self._operations],
        )

    def sync(self, new_workflow: "Workflow[ContextT, InputT, OutputT]") -> None:
        """
        Replace this workflow's structure and functions with `new_workflow`'s, keeping
        the cached result of every operation whose function, and whose upstream
        functions, are unchanged.

        An operation whose function hash changed is replaced, and it and everything
        downstream of it in the *old* graph is cleared. Operations new to
        `new_workflow` are added and operations missing from it are dropped. An
        operation with an unchanged function but different upstream edges keeps its
        cache until its next evaluation sees a different input.

        Operations taken from `new_workflow` are copied, so evaluating or clearing
        this workflow afterwards never touches `new_workflow`.
        """
        working = self._copy()
        working._topology = new_workflow._topology.copy()

        for new_operation in new_workflow._operations:
            old_operation = self._lookup.get(new_operation.id)
            if old_operation is None:
                logger.debug("Sync: adding operation '%s'.", new_operation.id)
                added = new_operation._copy()
                working._operations.append(added)
                working._lookup[added.id] = added
                continue

            if new_operation.func.hash == old_operation.func.hash:
                continue

            replacement = new_operation._copy()
            working._operations = [
                replacement if operation.id == replacement.id else operation
                for operation in working._operations
            ]
            working._lookup[replacement.id] = replacement

            # nothing has been removed yet, so every old downstream id still resolves
            downstream_ids = (
                self._topology.preorder(new_operation.id)
                if new_operation.id in self._topology
                else [new_operation.id]
            )
            logger.debug(
                "Sync: operation '%s' changed, invalidating %s.",
                new_operation.id,
                downstream_ids,
            )
            for downstream_id in downstream_ids:
                non_empty(working._lookup.get(downstream_id), downstream_id).clear()

        for old_operation in self._operations:
            if old_operation.id not in new_workflow._lookup:
                logger.debug("Sync: removing operation '%s'.", old_operation.id)
                working._operations = [
                    operation
                    for operation in working._operations
                    if operation.id != old_operation.id
                ]
                working._lookup.pop(old_operation.id, None)

        self._topology = working._topology
        self._operations = working._operations
        self._lookup = working._lookup

    ##
    ## INTROSPECTION
    ##

    @property
    def peer(self) -> WorkflowView:
        """A read-only view of the workflow's internals."""
        return WorkflowView(
            operations=tuple(self._operations),
            lookup=MappingProxyType(dict(self._lookup)),
            graph=self._topology.frozen(),
        )
