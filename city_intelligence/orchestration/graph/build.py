"""
Per-city loop graph construction.

The nodes are bound methods of a runner object that owns the session's
collaborators (scheduler, executor, reflection engine, state store), so
one compiled graph is built per city run.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Protocol

from langgraph.graph import StateGraph, END

from city_intelligence.orchestration.graph.router import route_after_execute, route_after_reflect
from city_intelligence.orchestration.graph.state import CityLoopState


logger = logging.getLogger(__name__)

NodeFn = Callable[[CityLoopState], Awaitable[Dict[str, Any]]]


class CityLoopNodes(Protocol):
    plan_node: NodeFn
    execute_node: NodeFn
    reflect_node: NodeFn
    refine_node: NodeFn
    complete_node: NodeFn


def create_city_graph(nodes: CityLoopNodes):
    """
    Create and compile the per-city quality loop.

    The graph structure is:
        Entry -> plan -> execute
          -> route_after_execute
               -> "reflect"   -> reflect -> route_after_reflect
               -> "cancelled" -> END
          route_after_reflect
               -> "complete"  -> complete -> END
               -> "refine"    -> refine   -> plan
               -> "plan"      -> plan
               -> "cancelled" -> END

    Args:
        nodes: Object providing the async node callables

    Returns:
        Compiled LangGraph application ready for execution.
    """
    graph = StateGraph(CityLoopState)

    # Add nodes
    graph.add_node("plan", nodes.plan_node)
    graph.add_node("execute", nodes.execute_node)
    graph.add_node("reflect", nodes.reflect_node)
    graph.add_node("refine", nodes.refine_node)
    graph.add_node("complete", nodes.complete_node)

    graph.set_entry_point("plan")
    graph.add_edge("plan", "execute")

    graph.add_conditional_edges(
        "execute",
        route_after_execute,
        {
            "reflect": "reflect",
            "cancelled": END,
        },
    )

    graph.add_conditional_edges(
        "reflect",
        route_after_reflect,
        {
            "complete": "complete",
            "refine": "refine",
            "plan": "plan",
            "cancelled": END,
        },
    )

    graph.add_edge("refine", "plan")

    # Complete -> END
    graph.add_edge("complete", END)

    app = graph.compile()

    return app
