import json
import pytest
import sys
from pathlib import Path

# Ensure src/ is in the python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from minicluster.core.models import ClusterEnvironment, ClusterOptions, NodeInstance  # noqa: E402
from minicluster.runtime.membership_rpc import WorkerEntry  # noqa: E402
from minicluster.runtime.orchestrator import ClusterOrchestrator  # noqa: E402
from minicluster.utils.errors import RPCFailure  # noqa: E402


class FakeClock:
    """Deterministic clock: sleeping advances time instantly."""

    def __init__(self, start: float = 100.0):
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def parse_flags(argv):
    flags = {}
    for arg in argv[1:]:
        if not arg.startswith("--"):
            continue
        key, _, value = arg[2:].partition("=")
        flags[key] = value
    return flags


class FakeNetwork:
    """Shared state behind FakeProcess and FakeTransport.

    Fake servers write a real status artifact on launch; workers register with
    the fake coordinator membership unless `auto_register` is off.
    """

    def __init__(self):
        self.next_port = 20000
        self.next_pid = 5000
        self.sequences: dict[str, int] = {}
        self.registered: dict[str, NodeInstance] = {}
        self.auto_register = True
        self.behaviour: dict[str, str] = {}
        self.exit_code = 7
        self.processes: list["FakeProcess"] = []
        self.rpc_error: Exception | None = None
        self.list_calls = 0

    def allocate_port(self) -> int:
        self.next_port += 1
        return self.next_port

    def process_factory(self):
        return FakeProcess(self)

    def transport_factory(self):
        return FakeTransport(self)


class FakeProcess:
    def __init__(self, network: FakeNetwork):
        self.network = network
        self.exe = None
        self.argv: list[str] = []
        self.signals: list[str] = []
        self.exited = False
        self.exit_code = None
        self.waited = False
        self._pid = None

    @property
    def pid(self):
        return self._pid

    @property
    def is_launched(self):
        return self._pid is not None

    def launch(self, exe, argv, stdout=None, stderr=None):
        self.exe = exe
        self.argv = list(argv)
        self.network.next_pid += 1
        self._pid = self.network.next_pid
        self.network.processes.append(self)

        behaviour = self.network.behaviour.get(Path(exe).name) or self.network.behaviour.get(argv[0])
        if behaviour == "exit":
            self.exited = True
            self.exit_code = self.network.exit_code
            return
        if behaviour == "hang":
            return

        flags = parse_flags(argv)
        role = "coordinator" if "coordinator_base_dir" in flags else "worker"
        base_dir = flags[f"{role}_base_dir"]
        permanent_id = f"uuid-{Path(base_dir).name}"
        sequence = self.network.sequences.get(base_dir, 0) + 1
        self.network.sequences[base_dir] = sequence

        host, _, port = flags[f"{role}_rpc_bind_addresses"].rpartition(":")
        rpc_port = int(port) or self.network.allocate_port()
        web_port = int(flags[f"{role}_web_port"]) or self.network.allocate_port()

        status = {
            "node_instance": {"permanent_id": permanent_id, "start_sequence": sequence},
            "bound_rpc_addresses": [{"host": host, "port": rpc_port}],
            "bound_http_addresses": [{"host": "127.0.0.1", "port": web_port}],
        }
        Path(flags["server_dump_info_path"]).write_text(json.dumps(status))

        if role == "worker" and self.network.auto_register:
            self.network.registered[permanent_id] = NodeInstance(
                permanent_id=permanent_id, start_sequence=sequence
            )

    def suspend(self):
        self.signals.append("STOP")

    def resume(self):
        self.signals.append("CONT")

    def terminate(self):
        self.signals.append("KILL")
        if not self.exited:
            self.exited = True
            self.exit_code = -9

    def wait(self):
        self.waited = True
        return self.exit_code if self.exit_code is not None else 0

    def poll_exited(self):
        return self.exited, self.exit_code

    def reset(self):
        self._pid = None


class FakeProxy:
    def __init__(self, network: FakeNetwork, endpoint):
        self.network = network
        self.endpoint = endpoint

    def list_workers(self, timeout_seconds=None):
        self.network.list_calls += 1
        if self.network.rpc_error is not None:
            raise self.network.rpc_error
        return [WorkerEntry(node_instance=instance) for instance in self.network.registered.values()]


class FakeTransport:
    def __init__(self, network: FakeNetwork):
        self.network = network
        self.is_shut_down = False

    def proxy(self, endpoint):
        return FakeProxy(self.network, endpoint)

    def shutdown(self):
        self.is_shut_down = True


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_network():
    return FakeNetwork()


@pytest.fixture
def make_orchestrator(tmp_path, fake_network, fake_clock):
    """
    Returns a factory building an orchestrator wired to the fake network.
    """
    def factory(**option_overrides):
        option_values = {
            "bin_root": tmp_path / "bin",
            "data_root": tmp_path / "data",
        }
        option_values.update(option_overrides)
        return ClusterOrchestrator(
            options=ClusterOptions(**option_values),
            environment=ClusterEnvironment(),
            process_factory=fake_network.process_factory,
            transport_factory=fake_network.transport_factory,
            clock=fake_clock,
        )

    return factory


@pytest.fixture
def rpc_failure():
    return RPCFailure("ListWorkers RPC failed: connection refused", daemon="127.0.0.1:1")
