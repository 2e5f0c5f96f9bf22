import pytest

from config.topology import Endpoint, RedisPair, Topology
from config.topology_store import TopologyStore
from connection.errors import UnexpectedReplyError, UnreachableError


# -------------------------------
# Fake redis servers
# -------------------------------
class FakeNode:
    def __init__(self, host, port):
        self.host = host
        self.port = port
        self.up = True
        self.upstream = None  # None -> acting primary
        self.refuse_writes = False
        self.refuse_role_changes = False
        self.ping_script = []  # per-ping answers, used before falling back to `up`
        self.role_failures = 0  # next N role commands fail as unreachable
        self.closed = 0

    @property
    def is_primary(self):
        return self.upstream is None


class FakeClient:
    def __init__(self, cluster, node):
        self.cluster = cluster
        self.node = node
        self.host = node.host
        self.port = node.port

    def _record(self, *command):
        self.cluster.commands.append((self.host, self.port) + command)

    def _require_up(self):
        if not self.node.up:
            raise UnreachableError(self.host, self.port, "connection refused")

    def ping(self):
        self._record("PING")
        alive = self.node.ping_script.pop(0) if self.node.ping_script else self.node.up
        if not alive:
            raise UnreachableError(self.host, self.port, "connection refused")

    def set(self, key, value):
        self._record("SET", key)
        self._require_up()
        if self.node.refuse_writes or not self.node.is_primary:
            raise UnexpectedReplyError(self.host, self.port, "SET", "READONLY")

    def _role_change(self, *command):
        self._record("REPLICAOF", *command)
        if self.node.role_failures:
            self.node.role_failures -= 1
            raise UnreachableError(self.host, self.port, "connection refused")
        self._require_up()
        if self.node.refuse_role_changes:
            raise UnexpectedReplyError(self.host, self.port, "REPLICAOF", "ERR")

    def replica_of(self, host, port):
        self._role_change(host, str(port))
        self.node.upstream = (host, int(port))
        self.node.refuse_writes = False

    def replica_of_no_one(self):
        self._role_change("no", "one")
        self.node.upstream = None
        self.node.refuse_writes = False

    def close(self):
        self.node.closed += 1


class FakeCluster:
    def __init__(self):
        self.nodes = {}
        self.commands = []

    def node(self, host, port) -> FakeNode:
        if (host, port) not in self.nodes:
            self.nodes[(host, port)] = FakeNode(host, port)
        return self.nodes[(host, port)]

    def set_up(self, host, ports, up):
        for port in ports:
            self.node(host, port).up = up

    def role_commands(self, host=None):
        return [c for c in self.commands if c[2] == "REPLICAOF" and (host is None or c[0] == host)]

    def __call__(self, host, port):
        return FakeClient(self, self.node(host, port))


class FakeProxy:
    def __init__(self):
        self.calls = []

    def configure(self, address, ports):
        self.calls.append((address, list(ports)))


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def proxy():
    return FakeProxy()


@pytest.fixture
def pair():
    return RedisPair(
        primary=Endpoint(public_ip="10.0.0.1", private_ip="192.168.0.1"),
        secondary=Endpoint(public_ip="10.0.0.2", private_ip="192.168.0.2"),
        ports=[6379, 6380],
    )


@pytest.fixture
def store(tmp_path, pair):
    return TopologyStore(str(tmp_path / "toggle.conf"), Topology(pairs=[pair]))
