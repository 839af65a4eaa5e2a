from __future__ import annotations

from typing import Iterable, List, Optional, Protocol, Sequence

from minicluster.core.models import NodeInstance
from minicluster.runtime.daemon import DaemonHandle
from minicluster.runtime.membership_rpc import WorkerEntry
from minicluster.runtime.polling import Clock, poll_until
from minicluster.utils.console import ClusterLog
from minicluster.utils.errors import ConvergenceTimedOut

DEFAULT_CONVERGENCE_INTERVAL_SECONDS = 0.001

# Floor for the per-call ListWorkers timeout.
MIN_RPC_TIMEOUT_SECONDS = 0.1


class MembershipSource(Protocol):
    """Anything that can list the workers a coordinator currently knows."""

    def list_workers(self, timeout_seconds: Optional[float] = None) -> List[WorkerEntry]:
        ...


def count_matching_workers(workers: Iterable[DaemonHandle], entries: Iterable[WorkerEntry]) -> int:
    """Count local workers whose exact incarnation appears in `entries`.

    Matching is on (permanent_id, start_sequence), so a registration left over
    from before a restart does not count.
    """
    reported = {entry.node_instance for entry in entries}
    local: List[NodeInstance] = [worker.instance_id() for worker in workers if worker.status is not None]
    return sum(1 for instance in local if instance in reported)


class ConvergenceWaiter:
    """Waits until the leader coordinator reports the expected worker set."""

    def __init__(
        self,
        membership: MembershipSource,
        interval_seconds: float = DEFAULT_CONVERGENCE_INTERVAL_SECONDS,
        clock: Optional[Clock] = None,
        log: Optional[ClusterLog] = None,
    ) -> None:
        self.membership = membership
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.log = log or ClusterLog()

    def wait_for_worker_count(
        self,
        workers: Sequence[DaemonHandle],
        expected: int,
        timeout_seconds: float,
    ) -> None:
        """Poll until exactly `expected` local workers are registered.

        RPC failures propagate on the first occurrence. A count above
        `expected` keeps polling until the deadline. Each call gets the time
        left before the deadline, but never less than MIN_RPC_TIMEOUT_SECONDS.
        """

        def attempt(remaining: float) -> Optional[bool]:
            entries = self.membership.list_workers(timeout_seconds=max(remaining, MIN_RPC_TIMEOUT_SECONDS))
            if count_matching_workers(workers, entries) == expected:
                return True
            return None

        poll_until(
            attempt,
            timeout_seconds=timeout_seconds,
            interval_seconds=self.interval_seconds,
            on_timeout=lambda: ConvergenceTimedOut(f"{expected} worker(s) never registered with coordinator"),
            clock=self.clock,
        )
        self.log.log(f"{expected} worker(s) registered with coordinator", severity="info")
