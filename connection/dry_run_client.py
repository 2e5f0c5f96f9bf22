from connection.datastore_client import DataStoreClient

import logging

logger = logging.getLogger(__name__)


class DryRunClient(DataStoreClient):
    """
    Client used with --testing: checks still hit the real node, role changes are
    only logged and recorded in `executed`.
    """
    def __init__(self, host, port, connect_timeout=2.0, command_timeout=2.0):
        super().__init__(host, port, connect_timeout, command_timeout)
        self.executed = []

    def replica_of(self, host, port):
        self.executed.append(("REPLICAOF", host, str(port)))
        logger.info("(TEST MODE) would send REPLICAOF %s %s to %s:%s", host, port, self.host, self.port)

    def replica_of_no_one(self):
        self.executed.append(("REPLICAOF", "no", "one"))
        logger.info("(TEST MODE) would send REPLICAOF no one to %s:%s", self.host, self.port)
