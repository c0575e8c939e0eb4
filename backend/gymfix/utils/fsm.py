from __future__ import annotations
"""Small finite state machine helper for status lifecycles.

Usage:
    from gymfix.utils.fsm import TransitionGraph
    graph = TransitionGraph({
        'open': {'in_review'},
        'in_review': {'resolved'},
        'resolved': set(),
    })
    graph.can_transition('open', 'in_review')  # True
    graph.is_terminal('resolved')               # True

The graph only answers questions; callers decide which error to raise.
"""
from typing import Dict, Iterable, Set


class TransitionGraph:
    def __init__(self, graph: Dict[str, Iterable[str]], field_name: str = 'status'):
        self.graph: Dict[str, Set[str]] = {k: set(v) for k, v in graph.items()}
        self.field_name = field_name

    @property
    def states(self) -> Set[str]:
        found = set(self.graph)
        for targets in self.graph.values():
            found |= targets
        return found

    def targets(self, current: str) -> Set[str]:
        return set(self.graph.get(current, set()))

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.graph.get(current, set())

    def is_terminal(self, state: str) -> bool:
        return state in self.states and not self.graph.get(state)

    def describe(self, current: str, target: str) -> str:
        return f"Invalid {self.field_name} transition {current} -> {target}"

__all__ = ['TransitionGraph']
