from __future__ import annotations

from enum import Enum

from minicluster.utils.errors import IllegalStateError


class ClusterState(str, Enum):
    """Lifecycle states of a cluster orchestrator."""

    NOT_STARTED = "not_started"
    STARTING = "starting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class ClusterEvent(str, Enum):
    """Events that drive orchestrator state transitions."""

    START = "start"
    CONVERGED = "converged"
    SHUTDOWN = "shutdown"
    SHUTDOWN_COMPLETE = "shutdown_complete"


def transition_cluster_state(current: ClusterState, event: ClusterEvent) -> ClusterState:
    """Compute the next orchestrator state for a given event.

    A failed start stays in STARTING; only SHUTDOWN leaves it.
    Invalid transitions raise IllegalStateError.
    """

    if current == ClusterState.NOT_STARTED:
        if event == ClusterEvent.START:
            return ClusterState.STARTING
        raise IllegalStateError(f"Invalid cluster transition: {current.value} -> {event.value}")

    if current == ClusterState.STARTING:
        if event == ClusterEvent.CONVERGED:
            return ClusterState.RUNNING
        if event == ClusterEvent.SHUTDOWN:
            return ClusterState.SHUTTING_DOWN
        raise IllegalStateError(f"Invalid cluster transition: {current.value} -> {event.value}")

    if current == ClusterState.RUNNING:
        if event == ClusterEvent.SHUTDOWN:
            return ClusterState.SHUTTING_DOWN
        raise IllegalStateError(f"Invalid cluster transition: {current.value} -> {event.value}")

    if current == ClusterState.SHUTTING_DOWN:
        if event == ClusterEvent.SHUTDOWN_COMPLETE:
            return ClusterState.STOPPED
        raise IllegalStateError(f"Invalid cluster transition: {current.value} -> {event.value}")

    if current == ClusterState.STOPPED:
        raise IllegalStateError(f"Invalid cluster transition: {current.value} -> {event.value}")

    raise IllegalStateError(f"Unknown cluster state: {current}")
