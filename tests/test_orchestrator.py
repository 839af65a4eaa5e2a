import io

import pytest
from rich.console import Console

from minicluster.core.models import ClusterEnvironment, ClusterOptions
from minicluster.runtime.lifecycle import ClusterState
from minicluster.runtime.orchestrator import ClusterOrchestrator
from minicluster.utils.errors import (
    ConfigurationError,
    ConvergenceTimedOut,
    IllegalStateError,
    ProcessExitedEarly,
    RPCFailure,
)


def test_single_coordinator_cluster_reaches_running(make_orchestrator, fake_network, tmp_path):
    cluster = make_orchestrator(num_workers=3)

    cluster.start()

    assert cluster.state == ClusterState.RUNNING
    assert len(cluster.coordinators) == 1
    assert len(cluster.workers) == 3
    assert [w.daemon_id for w in cluster.workers] == ["worker-0", "worker-1", "worker-2"]
    assert cluster.leader_coordinator().data_dir == tmp_path / "data" / "coordinator-0"
    assert fake_network.processes[0].argv[0] == "cluster-coordinator"
    assert fake_network.processes[0].exe == tmp_path / "bin" / "cluster-coordinator"

    cluster.wait_for_worker_count(3, timeout_seconds=5.0)


def test_workers_are_pointed_at_every_coordinator(make_orchestrator, fake_network):
    cluster = make_orchestrator(
        num_coordinators=3,
        num_workers=2,
        coordinator_rpc_ports=[7051, 7052, 7053],
    )

    cluster.start()

    coordinator_argvs = [p.argv for p in fake_network.processes[:3]]
    assert "--leader" in coordinator_argvs[0]
    assert "--leader_address=127.0.0.1:7051" in coordinator_argvs[1]
    assert "--leader_address=127.0.0.1:7051" in coordinator_argvs[2]

    worker_argv = fake_network.processes[3].argv
    assert "--worker_coordinator_addrs=127.0.0.1:7051,127.0.0.1:7052,127.0.0.1:7053" in worker_argv
    assert [str(c.bound_rpc_hostport()) for c in cluster.coordinators] == [
        "127.0.0.1:7051",
        "127.0.0.1:7052",
        "127.0.0.1:7053",
    ]


def test_distributed_start_without_ports_is_configuration_error(make_orchestrator, fake_network):
    cluster = make_orchestrator(num_coordinators=2, num_workers=0)

    with pytest.raises(ConfigurationError):
        cluster.start()

    assert fake_network.processes == []


def test_start_twice_is_illegal(make_orchestrator):
    cluster = make_orchestrator(num_workers=1)
    cluster.start()

    with pytest.raises(IllegalStateError):
        cluster.start()


def test_convergence_timeout_leaves_cluster_for_inspection(make_orchestrator, fake_network):
    fake_network.auto_register = False
    cluster = make_orchestrator(num_workers=2, registration_timeout_seconds=0.05)

    with pytest.raises(ConvergenceTimedOut):
        cluster.start()

    assert cluster.state == ClusterState.STARTING
    assert len(cluster.workers) == 2
    assert all(worker.is_running() for worker in cluster.workers)

    cluster.shutdown()
    assert cluster.state == ClusterState.STOPPED


def test_partial_worker_failure_keeps_started_nodes(make_orchestrator, fake_network):
    cluster = make_orchestrator(num_workers=3)
    original_factory = fake_network.process_factory
    launched = []

    def failing_third_worker():
        process = original_factory()
        launched.append(process)
        if len(launched) == 4:
            fake_network.behaviour["cluster-worker"] = "exit"
        return process

    cluster.process_factory = failing_third_worker

    with pytest.raises(ProcessExitedEarly):
        cluster.start()

    assert len(cluster.coordinators) == 1
    assert len(cluster.workers) == 2
    assert cluster.leader_coordinator().is_running() is True


def test_rpc_failure_during_convergence_propagates(make_orchestrator, fake_network, rpc_failure):
    fake_network.rpc_error = rpc_failure
    cluster = make_orchestrator(num_workers=1)

    with pytest.raises(RPCFailure):
        cluster.start()

    assert fake_network.list_calls == 1


def test_shutdown_kills_everything_and_is_idempotent(make_orchestrator, fake_network):
    cluster = make_orchestrator(num_workers=2)
    cluster.start()
    transport = cluster.transport

    cluster.shutdown()
    cluster.shutdown()

    assert cluster.state == ClusterState.STOPPED
    assert cluster.coordinators == ()
    assert cluster.workers == ()
    assert cluster.transport is None
    assert transport.is_shut_down is True
    assert all("KILL" in p.signals for p in fake_network.processes)


def test_shutdown_before_start_is_noop(make_orchestrator):
    cluster = make_orchestrator()

    cluster.shutdown()

    assert cluster.state == ClusterState.NOT_STARTED


def test_create_client_requires_running_cluster(make_orchestrator):
    cluster = make_orchestrator(num_workers=1)

    with pytest.raises(IllegalStateError):
        cluster.create_client(lambda address: address)

    cluster.start()
    leader_address = str(cluster.leader_coordinator().bound_rpc_hostport())

    assert cluster.create_client(lambda address: ("client", address)) == ("client", leader_address)


def test_add_worker_after_start_grows_cluster(make_orchestrator):
    cluster = make_orchestrator(num_workers=1)
    cluster.start()

    worker = cluster.add_worker()
    cluster.wait_for_worker_count(2, timeout_seconds=1.0)

    assert worker.daemon_id == "worker-1"
    assert cluster.worker(1) is worker


def test_add_worker_requires_started_cluster(make_orchestrator):
    cluster = make_orchestrator()

    with pytest.raises(IllegalStateError):
        cluster.add_worker()


def test_restarted_worker_must_reregister_before_counting(make_orchestrator, fake_network):
    cluster = make_orchestrator(num_workers=2)
    cluster.start()
    worker = cluster.worker(1)
    worker.shutdown()

    fake_network.auto_register = False
    worker.restart()

    with pytest.raises(ConvergenceTimedOut):
        cluster.wait_for_worker_count(2, timeout_seconds=0.01)

    fake_network.registered[worker.instance_id().permanent_id] = worker.instance_id()
    cluster.wait_for_worker_count(2, timeout_seconds=0.01)


def test_context_manager_shuts_down_on_exit(make_orchestrator, fake_network):
    with make_orchestrator(num_workers=1) as cluster:
        assert cluster.state == ClusterState.RUNNING

    assert cluster.state == ClusterState.STOPPED
    assert all("KILL" in p.signals for p in fake_network.processes)


def test_roots_are_resolved_from_environment(tmp_path, fake_network, fake_clock):
    environment = ClusterEnvironment(bin_root=tmp_path / "env-bin", data_root=tmp_path / "env-data")
    cluster = ClusterOrchestrator(
        options=ClusterOptions(num_workers=0),
        environment=environment,
        process_factory=fake_network.process_factory,
        transport_factory=fake_network.transport_factory,
        clock=fake_clock,
    )

    cluster.start()

    assert cluster.bin_root == tmp_path / "env-bin"
    assert cluster.data_root == tmp_path / "env-data"
    assert cluster.get_data_path("worker-7") == tmp_path / "env-data" / "worker-7"
    assert (tmp_path / "env-data").is_dir()


def test_print_nodes_renders_table(make_orchestrator, monkeypatch):
    buffer = io.StringIO()
    monkeypatch.setattr("minicluster.utils.console.error_console", Console(file=buffer, width=200))
    cluster = make_orchestrator(num_workers=1)
    cluster.start()

    cluster.print_nodes()

    output = buffer.getvalue()
    assert "coordinator-0" in output
    assert "worker-0" in output
    assert "running" in output


def test_each_cluster_keeps_its_own_log_level(tmp_path, fake_network, fake_clock):
    def build(name, level):
        return ClusterOrchestrator(
            options=ClusterOptions(bin_root=tmp_path / "bin", data_root=tmp_path / name, num_workers=1),
            environment=ClusterEnvironment(log_level=level),
            process_factory=fake_network.process_factory,
            transport_factory=fake_network.transport_factory,
            clock=fake_clock,
        )

    verbose = build("verbose", "DEBUG")
    quiet = build("quiet", "WARNING")
    verbose.start()
    quiet.start()

    assert verbose.log.level == "DEBUG"
    assert quiet.log.level == "WARNING"
    assert quiet.worker(0).log is quiet.log
    assert verbose.coordinator(0).log is verbose.log
