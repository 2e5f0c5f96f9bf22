'''
Health Checker answers one question: is this redis server up on this port. It opens
a fresh connection, sends PING and expects PONG back.

When the server is supposed to be the primary it also writes a timestamp to a probe
key. A server that answers PING but refuses the write is a primary that got demoted
behind our back (usually an old retry finally landing after a switch), so the checker
re-instates it with REPLICAOF no one on the spot and still reports it as up.
'''

import logging
import time

from connection.errors import ToggleError

logger = logging.getLogger(__name__)

PROBE_KEY = "toggle:probe"


class HealthChecker:
    def __init__(self, client_factory, clock=time.time):
        """
        client_factory(host, port) must return a client with ping(), set(),
        replica_of_no_one() and close()
        """
        self.client_factory = client_factory
        self.clock = clock

    def check(self, host: str, port: int, expect_primary: bool = False) -> bool:
        client = self.client_factory(host, port)
        try:
            try:
                client.ping()
            except ToggleError as e:
                logger.warning("Unable to connect to redis server %s:%d :: %s", host, port, e)
                return False

            if expect_primary:
                self._confirm_primary(client, host, port)
            return True
        finally:
            client.close()

    def _confirm_primary(self, client, host, port):
        try:
            client.set(PROBE_KEY, str(self.clock()))
            return
        except ToggleError as e:
            logger.warning("Primary %s:%d refused the probe write, re-instating it as primary :: %s",
                           host, port, e)
        try:
            client.replica_of_no_one()
        except ToggleError as e:
            logger.error("Unable to re-instate %s:%d as primary :: %s", host, port, e)
