"""
State machine value objects (``shipment_kernel.domain.workflow``).

A request carries two independent status dimensions, commercial and
delivery.  Each is described by one ``Workflow``: a closed set of states, an
initial state, terminal states and the legal ``Transition`` edges between
them.  Nothing here touches the database; ``domain/lifecycle.py`` builds the
two tables and the lifecycle service enforces them.

Construction fails with ValueError when an edge names an unknown state or
leaves a terminal state.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """Named precondition attached to an edge; evaluated by the lifecycle service."""
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """
    One legal edge.  ``action`` is the audit action recorded when it fires.

    Shortcut edges (Rejected, Cancelled, Failed) jump out of the forward
    ordering and are not subject to the edge guards.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    shortcut: bool = False


@dataclass(frozen=True)
class Workflow:
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        known = set(self.states)
        if self.initial_state not in known:
            raise ValueError(f"{self.name}: initial state {self.initial_state!r} not in states")
        for edge in self.transitions:
            if not {edge.from_state, edge.to_state} <= known:
                raise ValueError(
                    f"{self.name}: edge {edge.action} uses an unknown state "
                    f"({edge.from_state!r} -> {edge.to_state!r})"
                )
            if edge.from_state in self.terminal_states:
                raise ValueError(
                    f"{self.name}: terminal state {edge.from_state!r} cannot have outgoing edges"
                )

    def find(self, from_state: str, to_state: str) -> Transition | None:
        """The edge ``from_state -> to_state``, or None when the move is illegal."""
        return next(
            (e for e in self.transitions if (e.from_state, e.to_state) == (from_state, to_state)),
            None,
        )

    def next_states(self, from_state: str) -> tuple[str, ...]:
        return tuple(e.to_state for e in self.transitions if e.from_state == from_state)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states
