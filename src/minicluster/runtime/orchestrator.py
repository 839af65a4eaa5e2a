from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional, Tuple, TypeVar

from minicluster.core.models import ClusterEnvironment, ClusterOptions
from minicluster.core.topology import ClusterTopologyPlanner, RolePlan
from minicluster.runtime.convergence import ConvergenceWaiter
from minicluster.runtime.daemon import DaemonHandle
from minicluster.runtime.lifecycle import ClusterEvent, ClusterState, transition_cluster_state
from minicluster.runtime.membership_rpc import CoordinatorProxy, RPCTransport
from minicluster.runtime.polling import Clock
from minicluster.runtime.process import ManagedProcess, ProcessController
from minicluster.utils.console import ClusterLog
from minicluster.utils.errors import ClusterError, IllegalStateError

ClientT = TypeVar("ClientT")


class ClusterOrchestrator:
    """Brings up, exposes and tears down a cluster of external server processes.

    Coordinators start first (a single one on an ephemeral port, or a leader
    plus followers on fixed ports), then workers one by one, then the
    orchestrator waits for every worker to register with the leader.
    Everything runs synchronously on the caller's thread.

    A failed `start()` leaves the daemons it already launched running;
    call `shutdown()` to clean up. Used as a context manager, the cluster
    is shut down on exit.
    """

    def __init__(
        self,
        options: Optional[ClusterOptions] = None,
        environment: Optional[ClusterEnvironment] = None,
        process_factory: Callable[[], ProcessController] = ManagedProcess,
        transport_factory: Callable[[], RPCTransport] = RPCTransport,
        clock: Optional[Clock] = None,
    ) -> None:
        self.options = options or ClusterOptions()
        self.environment = environment or ClusterEnvironment()
        self.process_factory = process_factory
        self.transport_factory = transport_factory
        self.clock = clock
        self.log = ClusterLog(self.environment.log_level)

        self.planner = ClusterTopologyPlanner(self.options)
        self.state: ClusterState = ClusterState.NOT_STARTED
        self.bin_root: Optional[Path] = None
        self.data_root: Optional[Path] = None

        self._coordinators: List[DaemonHandle] = []
        self._workers: List[DaemonHandle] = []
        self._transport: Optional[RPCTransport] = None

    def __enter__(self) -> "ClusterOrchestrator":
        try:
            self.start()
        except BaseException:
            self.shutdown()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def __del__(self) -> None:
        if getattr(self, "state", None) in (ClusterState.STARTING, ClusterState.RUNNING):
            self.shutdown()

    @property
    def coordinators(self) -> Tuple[DaemonHandle, ...]:
        return tuple(self._coordinators)

    @property
    def workers(self) -> Tuple[DaemonHandle, ...]:
        return tuple(self._workers)

    @property
    def transport(self) -> Optional[RPCTransport]:
        return self._transport

    def start(self) -> None:
        self.state = transition_cluster_state(self.state, ClusterEvent.START)
        self._handle_options()

        self._transport = self.transport_factory()

        try:
            self.data_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ClusterError(f"Could not create root dir {self.data_root}: {exc}") from exc

        if self.options.num_coordinators != 1:
            self._start_distributed_coordinators()
        else:
            self._start_single_coordinator()

        for index in range(self.options.num_workers):
            try:
                self.add_worker()
            except ClusterError:
                self.log.log(f"Failed starting worker {index}", severity="error")
                raise

        self.wait_for_worker_count(self.options.num_workers, self.options.registration_timeout_seconds)
        self.state = transition_cluster_state(self.state, ClusterEvent.CONVERGED)

    def shutdown(self) -> None:
        if self.state in (ClusterState.NOT_STARTED, ClusterState.STOPPED):
            return

        self.state = transition_cluster_state(self.state, ClusterEvent.SHUTDOWN)

        for coordinator in self._coordinators:
            coordinator.shutdown()
        self._coordinators.clear()

        for worker in self._workers:
            worker.shutdown()
        self._workers.clear()

        if self._transport is not None:
            self._transport.shutdown()
            self._transport = None

        self.state = transition_cluster_state(self.state, ClusterEvent.SHUTDOWN_COMPLETE)

    def add_worker(self) -> DaemonHandle:
        """Start one more worker pointed at every current coordinator."""
        if self.state not in (ClusterState.STARTING, ClusterState.RUNNING):
            raise IllegalStateError(f"Cannot add a worker while the cluster is {self.state.value}.")
        if not self._coordinators:
            raise IllegalStateError("Must have started at least 1 coordinator before adding workers.")

        index = len(self._workers)
        coordinator_endpoints = [coordinator.bound_rpc_hostport() for coordinator in self._coordinators]
        plan = self.planner.plan_worker(index, coordinator_endpoints)
        worker = self._new_handle(self.options.worker_binary, plan)
        worker.start()
        self._workers.append(worker)
        return worker

    def wait_for_worker_count(self, expected: int, timeout_seconds: float) -> None:
        waiter = ConvergenceWaiter(self.leader_coordinator_proxy(), clock=self.clock, log=self.log)
        waiter.wait_for_worker_count(self._workers, expected, timeout_seconds)

    def create_client(self, factory: Callable[[str], ClientT]) -> ClientT:
        """Build an external client with `factory`, given the leader coordinator's RPC address."""
        if self.state != ClusterState.RUNNING:
            raise IllegalStateError(f"Cluster is {self.state.value}; clients need a running cluster.")
        return factory(str(self.leader_coordinator().bound_rpc_hostport()))

    def coordinator(self, index: int) -> DaemonHandle:
        return self._coordinators[index]

    def leader_coordinator(self) -> DaemonHandle:
        if not self._coordinators:
            raise IllegalStateError("No coordinator has been started.")
        return self._coordinators[0]

    def worker(self, index: int) -> DaemonHandle:
        return self._workers[index]

    def coordinator_proxy(self, index: int) -> CoordinatorProxy:
        if self._transport is None:
            raise IllegalStateError("Cluster has no RPC transport; start it first.")
        return self._transport.proxy(self._coordinators[index].bound_rpc_hostport())

    def leader_coordinator_proxy(self) -> CoordinatorProxy:
        self.leader_coordinator()
        return self.coordinator_proxy(0)

    def get_binary_path(self, binary: str) -> Path:
        if self.bin_root is None:
            raise IllegalStateError("Executable search root has not been resolved.")
        return self.bin_root / binary

    def get_data_path(self, daemon_id: str) -> Path:
        if self.data_root is None:
            raise IllegalStateError("Data root has not been resolved.")
        return self.data_root / daemon_id

    def print_nodes(self) -> None:
        rows = [handle.describe_row() for handle in (*self._coordinators, *self._workers)]
        self.log.print_nodes(rows, title=f"Cluster Nodes ({self.state.value})")

    def _handle_options(self) -> None:
        self.bin_root = self.options.bin_root or self.environment.deduce_bin_root()
        self.data_root = self.options.data_root or self.environment.deduce_data_root()

    def _new_handle(self, binary: str, plan: RolePlan) -> DaemonHandle:
        return DaemonHandle(
            exe=self.get_binary_path(binary),
            data_dir=self.get_data_path(plan.daemon_id),
            plan=plan,
            process_factory=self.process_factory,
            start_timeout_seconds=self.options.start_timeout_seconds,
            clock=self.clock,
            log=self.log,
        )

    def _start_single_coordinator(self) -> None:
        coordinator = self._new_handle(self.options.coordinator_binary, self.planner.plan_single_coordinator())
        coordinator.start()
        self._coordinators.append(coordinator)

    def _start_distributed_coordinators(self) -> None:
        plans = self.planner.plan_distributed_coordinators()

        for plan in plans:
            coordinator = self._new_handle(self.options.coordinator_binary, plan)
            try:
                coordinator.start()
            except ClusterError:
                role = "leader" if plan.leader else f"follower at index {plan.index}"
                self.log.log(f"Unable to start {role} coordinator", severity="error")
                raise
            self._coordinators.append(coordinator)
