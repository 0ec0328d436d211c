from __future__ import annotations

"""Generic step graph over a typed state value.

``StateGraph`` is a thin, validated front end to LangGraph's ``StateGraph``:

- Node functions take the current state and return a *partial* patch (sync
  or async). LangGraph merges the patch shallowly: keys present in the patch
  overwrite, every other key keeps its value.
- Static edges (``add_edge``) and conditional edges (``add_conditional_edge``,
  a resolver returning the next node name or ``END``) connect nodes. Each
  source node has exactly one outgoing edge, so nodes of one invocation never
  run concurrently.
- The first registered node is the entry point unless ``set_entry_point`` is
  called.

``CompiledGraph.invoke`` maps ``max_steps`` onto LangGraph's recursion limit
and converts ``GraphRecursionError`` into ``StepBudgetExceededError``. A
node that raises aborts the invocation with that exception; its patch is
never applied.
"""

import inspect
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Mapping, Optional, Union

from langgraph.errors import GraphRecursionError
from langgraph.graph import END
from langgraph.graph import StateGraph as LangGraphStateGraph

from ..errors import GraphDefinitionError, StepBudgetExceededError

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 100

NodePatch = Optional[Mapping[str, Any]]
NodeFunction = Callable[[Dict[str, Any]], Union[NodePatch, Awaitable[NodePatch]]]
EdgeResolver = Callable[[Dict[str, Any]], str]

__all__ = [
    "CompiledGraph",
    "DEFAULT_MAX_STEPS",
    "END",
    "EdgeResolver",
    "NodeFunction",
    "StateGraph",
]


def _as_node(name: str, fn: NodeFunction) -> Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]:
    async def _run(state: Dict[str, Any]) -> Dict[str, Any]:
        patch = fn(state)
        if inspect.isawaitable(patch):
            patch = await patch
        return dict(patch or {})

    _run.__name__ = f"node_{name}"
    return _run


class StateGraph:
    """Builder for a step graph over ``state_schema`` (a ``TypedDict``)."""

    def __init__(self, state_schema: type) -> None:
        self._schema = state_schema
        self._nodes: Dict[str, NodeFunction] = {}
        self._edges: Dict[str, str] = {}
        self._conditional: Dict[str, EdgeResolver] = {}
        self._entry: Optional[str] = None

    def add_node(self, name: str, fn: NodeFunction) -> "StateGraph":
        if name == END:
            raise GraphDefinitionError(f"{END!r} is reserved for the terminal sentinel")
        if name in self._nodes:
            raise GraphDefinitionError(f"Node already registered: {name}")
        self._nodes[name] = fn
        if self._entry is None:
            self._entry = name
        return self

    def set_entry_point(self, name: str) -> "StateGraph":
        self._entry = name
        return self

    def add_edge(self, source: str, target: str) -> "StateGraph":
        self._ensure_single_edge(source)
        self._edges[source] = target
        return self

    def add_conditional_edge(self, source: str, resolver: EdgeResolver) -> "StateGraph":
        self._ensure_single_edge(source)
        self._conditional[source] = resolver
        return self

    def _ensure_single_edge(self, source: str) -> None:
        if source in self._edges or source in self._conditional:
            raise GraphDefinitionError(f"Node {source} already has an outgoing edge")

    def compile(self) -> "CompiledGraph":
        """Validate the definition and build the executable graph.

        Raises:
            GraphDefinitionError: No entry point, or an edge naming an unknown node.
        """
        if self._entry is None or self._entry not in self._nodes:
            raise GraphDefinitionError(f"Entry point is not a registered node: {self._entry}")
        for source, target in self._edges.items():
            if source not in self._nodes:
                raise GraphDefinitionError(f"Edge source is not a registered node: {source}")
            if target != END and target not in self._nodes:
                raise GraphDefinitionError(f"Edge target is not a registered node: {target}")
        for source in self._conditional:
            if source not in self._nodes:
                raise GraphDefinitionError(f"Conditional edge source is not a registered node: {source}")

        g = LangGraphStateGraph(self._schema)
        for name, fn in self._nodes.items():
            g.add_node(name, _as_node(name, fn))
        g.set_entry_point(self._entry)
        for source, target in self._edges.items():
            g.add_edge(source, target)
        for source, resolver in self._conditional.items():
            g.add_conditional_edges(source, resolver)
        for name in self._nodes:
            if name not in self._edges and name not in self._conditional:
                g.add_edge(name, END)
        return CompiledGraph(g.compile())


class CompiledGraph:
    """Executable graph returned by ``StateGraph.compile``."""

    def __init__(self, graph: Any) -> None:
        self._graph = graph

    async def invoke(self, initial_state: Mapping[str, Any], *, max_steps: int = DEFAULT_MAX_STEPS) -> Dict[str, Any]:
        """
        Run the graph from the entry point until a resolver yields ``END``.

        Args:
            initial_state: Starting state; keys no node touches are returned unchanged.
            max_steps: Safety ceiling on node executions.

        Returns:
            The final merged state.

        Raises:
            StepBudgetExceededError: The ceiling was hit before reaching ``END``.
        """
        try:
            final = await self._graph.ainvoke(dict(initial_state), config={"recursion_limit": max_steps})
        except GraphRecursionError as e:
            logger.warning("Graph execution exceeded maximum steps: %s", max_steps)
            raise StepBudgetExceededError(max_steps) from e
        return {**initial_state, **(final or {})}

    async def stream(
        self, initial_state: Mapping[str, Any], *, max_steps: int = DEFAULT_MAX_STEPS
    ) -> AsyncIterator[tuple[str, Dict[str, Any]]]:
        """Yield ``(node_name, merged_state)`` after every node execution."""
        state = dict(initial_state)
        try:
            async for chunk in self._graph.astream(
                dict(initial_state), config={"recursion_limit": max_steps}, stream_mode="updates"
            ):
                for node, patch in chunk.items():
                    state.update(patch or {})
                    yield node, dict(state)
        except GraphRecursionError as e:
            logger.warning("Graph execution exceeded maximum steps: %s", max_steps)
            raise StepBudgetExceededError(max_steps) from e
