'''
FailoverManager decides when a pair has to switch. Every tick it checks the primary
of each pair on each port:

    primary answers                     -> STABLE, nothing to do
    primary silent, secondary silent    -> nothing to do, switching to a dead node is pointless
    primary silent, secondary answers   -> wait `retry` seconds and ask the primary once more
    still silent                        -> promote the secondary

The single re-check keeps a short network blip from flipping the pair back and
forth, while bounding the failover time to one tick plus one retry interval.

The periodic tick, the manual switch signal and the startup validation all go
through one lock, so only one of them touches the topology at a time.
'''

import enum
import logging
import threading
import time
from typing import Dict, Tuple

from config.topology import RedisPair
from connection.errors import ToggleError
from replication.role_commander import UNATTACHED

logger = logging.getLogger(__name__)


class BootstrapFatal(Exception):
    """The toggle can't start: neither server of a pair is usable."""


class PortState(enum.Enum):
    STABLE = "stable"
    SUSPECTED_DOWN = "suspected_down"
    CONFIRMING_DOWN = "confirming_down"
    PROMOTING = "promoting"


class FailoverManager:
    def __init__(self, store, checker, promotion, commander, proxy, retry_seconds: int = 2, sleep=time.sleep):
        """
        store      - TopologyStore
        checker    - HealthChecker
        promotion  - PromotionProtocol
        commander  - RoleCommander, used to re-assert roles at startup
        proxy      - NginxProxy
        """
        if retry_seconds < 1:
            raise ValueError(f"retry time must be greater than 0: {retry_seconds}")
        self.store = store
        self.checker = checker
        self.promotion = promotion
        self.commander = commander
        self.proxy = proxy
        self.retry_seconds = retry_seconds
        self.sleep = sleep
        self.states: Dict[Tuple[int, int], PortState] = {}
        self._lock = threading.RLock()

    # ----------------------
    # Periodic check
    # ----------------------
    def check(self) -> bool:
        """One tick. Returns True when at least one pair was switched."""
        with self._lock:
            promoted = False
            for index, pair in enumerate(self.store.pairs()):
                if self._check_pair(index, pair):
                    promoted = True
            return promoted

    def run_check(self) -> bool:
        """Tick and write the topology to disk if anything switched."""
        with self._lock:
            promoted = self.check()
            if promoted:
                self.store.persist()
            return promoted

    def _check_pair(self, index: int, pair: RedisPair) -> bool:
        primary, secondary = pair.primary, pair.secondary
        for port in pair.ports:
            if self.checker.check(primary.public_ip, port, expect_primary=True):
                self.states[(index, port)] = PortState.STABLE
                continue

            self.states[(index, port)] = PortState.SUSPECTED_DOWN
            if not self.checker.check(secondary.public_ip, port):
                logger.error("Lost connection to both primary %s and secondary %s on port %d (pair %d)",
                             primary.public_ip, secondary.public_ip, port, index)
                continue

            self.states[(index, port)] = PortState.CONFIRMING_DOWN
            self.sleep(self.retry_seconds)
            if self.checker.check(primary.public_ip, port, expect_primary=True):
                logger.info("Primary %s:%d answered on the second try, not switching", primary.public_ip, port)
                self.states[(index, port)] = PortState.STABLE
                continue

            # the promotion switches every port of the pair at once
            for p in pair.ports:
                self.states[(index, p)] = PortState.PROMOTING
            promoted = self.promotion.promote(index)
            for p in pair.ports:
                self.states[(index, p)] = PortState.STABLE if promoted else PortState.SUSPECTED_DOWN
            return promoted
        return False

    # ----------------------
    # Manual switch
    # ----------------------
    def switch(self) -> bool:
        """Promote the secondary of every pair, whatever their health."""
        with self._lock:
            promoted = False
            for index in range(len(self.store.pairs())):
                if self.promotion.promote(index):
                    promoted = True
            if promoted:
                self.store.persist()
            return promoted

    # ----------------------
    # Startup
    # ----------------------
    def validate(self) -> bool:
        """
        Make sure every pair can be served before the periodic check starts.
        A healthy primary gets its roles re-asserted and nginx pointed at it; a
        dead primary with a healthy secondary is switched right away. Raises
        BootstrapFatal when a pair has no usable server.
        """
        with self._lock:
            changed = False
            for index, pair in enumerate(self.store.pairs()):
                if self._primary_healthy(pair):
                    self._reassert(pair)
                    continue

                logger.warning("Primary %s of pair %d is not answering on every port, checking secondary",
                               pair.primary.public_ip, index)
                if not all(self.checker.check(pair.secondary.public_ip, port) for port in pair.ports):
                    raise BootstrapFatal(
                        f"Unable to validate redis servers. Pair {index}: primary {pair.primary.public_ip} "
                        f"and secondary {pair.secondary.public_ip} are not reachable on ports {pair.ports}"
                    )
                if not self.promotion.promote(index):
                    raise BootstrapFatal(
                        f"Unable to promote secondary {pair.secondary.public_ip} of pair {index} at startup"
                    )
                changed = True

            if changed:
                self.store.persist()
            logger.info("Config file validated")
            return changed

    def _primary_healthy(self, pair: RedisPair) -> bool:
        return all(self.checker.check(pair.primary.public_ip, port, expect_primary=True) for port in pair.ports)

    def _reassert(self, pair: RedisPair):
        primary, secondary = pair.primary, pair.secondary
        for port in pair.ports:
            try:
                self.commander.set_role(primary, port, UNATTACHED)
            except ToggleError as e:
                logger.warning("Unable to re-assert %s:%d as primary :: %s", primary.public_ip, port, e)
            try:
                self.commander.set_role(secondary, port, (primary.private_ip, port))
            except ToggleError as e:
                logger.warning("Unable to re-assert %s:%d as replica :: %s", secondary.public_ip, port, e)
        self.proxy.configure(primary.public_ip, pair.ports)
