import requests

from replication.sync_client import ReplicationSync


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    def __init__(self, *answers):
        self.answers = list(answers)
        self.requests = []

    def get(self, url, timeout=None):
        self.requests.append((url, timeout))
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


def topology(primary_public, primary_private, secondary_public, ports=(6379, 6380)):
    return {
        "version": 2,
        "pairs": [{
            "primary": {"public_ip": primary_public, "private_ip": primary_private},
            "secondary": {"public_ip": secondary_public},
            "ports": list(ports),
        }],
    }


def test_follower_copies_new_primary(proxy):
    session = FakeSession(
        FakeResponse(payload=topology("10.0.0.1", "192.168.0.1", "10.0.0.2")),
        FakeResponse(payload=topology("10.0.0.1", "192.168.0.1", "10.0.0.2")),
        FakeResponse(payload=topology("10.0.0.2", "192.168.0.2", "10.0.0.1")),
    )
    sync = ReplicationSync("10.0.0.9", 8080, proxy, timeout=1.5, session=session)

    assert sync.poll() is True
    assert sync.poll() is False
    assert sync.poll() is True

    assert proxy.calls == [("10.0.0.1", [6379, 6380]), ("10.0.0.2", [6379, 6380])]
    assert session.requests[0] == ("http://10.0.0.9:8080/", 1.5)
    assert sync.last_primary == {0: "192.168.0.2"}


def test_follower_reads_legacy_layout(proxy):
    legacy = {"main": {"public_ip": "10.0.0.1"}, "subordinate": {"public_ip": "10.0.0.2"}, "ports": [6379]}
    sync = ReplicationSync("10.0.0.9", 8080, proxy, session=FakeSession(FakeResponse(payload=legacy)))

    assert sync.poll() is True
    assert proxy.calls == [("10.0.0.1", [6379])]


def test_failures_are_ignored(proxy):
    session = FakeSession(
        requests.ConnectionError("refused"),
        FakeResponse(status_code=500, payload={}),
        FakeResponse(payload=ValueError("not json")),
        FakeResponse(payload={"pairs": []}),
    )
    sync = ReplicationSync("10.0.0.9", 8080, proxy, session=session)

    for _ in range(4):
        assert sync.poll() is False
    assert proxy.calls == []
    assert sync.last_primary == {}
