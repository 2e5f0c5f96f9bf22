'''
PromotionProtocol performs a switch for one pair. Three things have to happen:

1. the secondary is told it is now the primary (REPLICAOF no one) on every port,
2. nginx is pointed at it,
3. the topology records the swap.

Step 1 needs another machine, so it goes first, and if it fails on any port we stop
right there: nginx and the topology are left untouched. The ports already switched
stay switched; running the promotion again simply repeats REPLICAOF no one on them.

The old primary is usually down at this point, so telling it about the new primary
is handed to the RecoveryManager and never blocks the switch.
'''

import logging
from typing import List

from config.topology import Endpoint
from connection.errors import ToggleError
from replication.role_commander import UNATTACHED

logger = logging.getLogger(__name__)


class PartialPromotionError(Exception):
    def __init__(self, secondary: Endpoint, switched_ports: List[int], failed_port: int, cause: Exception):
        self.secondary = secondary
        self.switched_ports = list(switched_ports)
        self.failed_port = failed_port
        self.cause = cause
        super().__init__(
            f"promoting {secondary.public_ip} failed on port {failed_port} "
            f"after switching {self.switched_ports} :: {cause}"
        )

    @property
    def partial(self) -> bool:
        return bool(self.switched_ports)


class PromotionProtocol:
    def __init__(self, store, commander, recovery, proxy):
        """
        store     - TopologyStore
        commander - RoleCommander
        recovery  - RecoveryManager, keeps re-notifying the old primary
        proxy     - anything with configure(address, ports)
        """
        self.store = store
        self.commander = commander
        self.recovery = recovery
        self.proxy = proxy

    def promote(self, index: int) -> bool:
        pair = self.store.pairs()[index]
        old_primary, new_primary = pair.primary, pair.secondary
        logger.info("Switching away from old primary %s on ports %s", old_primary.public_ip, pair.ports)

        # a retry still aimed at the new primary would demote it again later
        cancelled = self.recovery.cancel_for(new_primary)

        try:
            self._detach(new_primary, pair.ports)
        except PartialPromotionError as e:
            # ports that were never detached still follow the current primary
            for task in cancelled:
                if task.port not in e.switched_ports:
                    self.recovery.schedule(task.target, task.port, task.upstream)
            if e.partial:
                logger.critical("Pair %d is half switched, redis roles no longer match the topology :: %s", index, e)
            else:
                logger.error("Unable to promote secondary to primary :: %s", e)
            return False

        for port in pair.ports:
            self.recovery.schedule(old_primary, port, (new_primary.private_ip, port))

        self.proxy.configure(new_primary.public_ip, pair.ports)
        self.store.swap(index)

        logger.info("Switch completed to new primary %s on ports %s", new_primary.public_ip, pair.ports)
        return True

    def _detach(self, secondary: Endpoint, ports: List[int]):
        switched: List[int] = []
        for port in ports:
            try:
                self.commander.set_role(secondary, port, UNATTACHED)
            except ToggleError as e:
                raise PartialPromotionError(secondary, switched, port, e) from e
            switched.append(port)
