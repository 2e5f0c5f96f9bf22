import logging

from monitoring.health_checker import PROBE_KEY, HealthChecker


def test_healthy_node(cluster):
    checker = HealthChecker(cluster)

    assert checker.check("10.0.0.1", 6379) is True
    assert cluster.commands == [("10.0.0.1", 6379, "PING")]
    assert cluster.node("10.0.0.1", 6379).closed == 1


def test_unreachable_node(cluster):
    cluster.node("10.0.0.1", 6379).up = False
    checker = HealthChecker(cluster)

    assert checker.check("10.0.0.1", 6379, expect_primary=True) is False
    # no write attempted against a dead node
    assert cluster.commands == [("10.0.0.1", 6379, "PING")]
    assert cluster.node("10.0.0.1", 6379).closed == 1


def test_primary_gets_probe_write(cluster):
    checker = HealthChecker(cluster, clock=lambda: 1234.5)

    assert checker.check("10.0.0.1", 6379, expect_primary=True) is True
    assert cluster.commands == [("10.0.0.1", 6379, "PING"), ("10.0.0.1", 6379, "SET", PROBE_KEY)]


def test_demoted_primary_is_reinstated(cluster):
    node = cluster.node("10.0.0.1", 6379)
    node.upstream = ("192.168.0.2", 6379)
    checker = HealthChecker(cluster)

    assert checker.check("10.0.0.1", 6379, expect_primary=True) is True
    assert cluster.role_commands() == [("10.0.0.1", 6379, "REPLICAOF", "no", "one")]
    assert node.is_primary


def test_failed_reinstatement_is_only_logged(cluster, caplog):
    node = cluster.node("10.0.0.1", 6379)
    node.refuse_writes = True
    node.refuse_role_changes = True
    checker = HealthChecker(cluster)

    with caplog.at_level(logging.ERROR):
        assert checker.check("10.0.0.1", 6379, expect_primary=True) is True
    assert "Unable to re-instate" in caplog.text


def test_secondary_is_not_written(cluster):
    cluster.node("10.0.0.2", 6379).upstream = ("192.168.0.1", 6379)
    checker = HealthChecker(cluster)

    assert checker.check("10.0.0.2", 6379) is True
    assert cluster.role_commands() == []
