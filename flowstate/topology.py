from typing import TYPE_CHECKING

import networkx as nx
from networkx import generate_network_text

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterator
    from typing import Any


class Topology:
    """
    The shape of a workflow: a directed graph keyed by operation id. Holds no
    operations itself, only which ids feed which.
    """

    def __init__(self, digraph: "nx.DiGraph | None" = None) -> None:
        self.digraph: nx.DiGraph = digraph if digraph is not None else nx.DiGraph()

    def __str__(self) -> str:
        return "\n".join(generate_network_text(self.digraph, vertical_chains=True))

    def __contains__(self, node: str) -> bool:
        return self.digraph.has_node(node)

    def __iter__(self) -> "Iterator[str]":
        return iter(self.digraph.nodes)

    def __len__(self) -> int:
        return self.digraph.number_of_nodes()

    def add_node(self, node: str) -> None:
        self.digraph.add_node(node)

    def add_edge(self, source: str, target: str) -> None:
        self.digraph.add_edge(source, target)

    def has_edge(self, source: str, target: str) -> bool:
        return self.digraph.has_edge(source, target)

    def remove_node(self, node: str) -> None:
        self.digraph.remove_node(node)

    def sources(self) -> list[str]:
        return [node for node, degree in self.digraph.in_degree() if degree == 0]

    def sinks(self) -> list[str]:
        return [node for node, degree in self.digraph.out_degree() if degree == 0]

    def predecessors(self, node: str) -> list[str]:
        """Upstream ids of `node`, in edge insertion order."""
        return list(self.digraph.predecessors(node))

    def is_acyclic(self) -> bool:
        return nx.is_directed_acyclic_graph(self.digraph)

    def order(self) -> list[str]:
        """All nodes in topological order. Raises `NetworkXUnfeasible` if cyclic."""
        return list(nx.topological_sort(self.digraph))

    def preorder(self, node: str) -> list[str]:
        """`node` followed by everything reachable downstream of it, depth first."""
        return list(nx.dfs_preorder_nodes(self.digraph, node))

    def copy(self) -> "Topology":
        return Topology(self.digraph.copy())

    def frozen(self) -> "nx.DiGraph":
        return nx.freeze(self.digraph.copy())

    def to_data(self) -> dict[str, "Any"]:
        return nx.node_link_data(self.digraph, edges="edges")

    @classmethod
    def from_data(cls, data: dict[str, "Any"]) -> "Topology":
        return cls(nx.node_link_graph(data, directed=True, edges="edges"))
