'''
ReplicationSync runs on follower toggles, the extra load balancers that don't make
decisions of their own. Each tick it asks the main toggle for its topology and, when
a pair's primary changed since the last look, points the local nginx at it.

A failed request is logged and forgotten; the next tick simply asks again.
'''

import logging
from typing import Dict, Optional

import requests

from config.topology import Topology

logger = logging.getLogger(__name__)


class ReplicationSync:
    def __init__(self, main_address: str, status_port: int, proxy, timeout: float = 2.0,
                 session: Optional[requests.Session] = None):
        self.url = f"http://{main_address}:{status_port}/"
        self.proxy = proxy
        self.timeout = timeout
        self.session = session or requests.Session()
        # pair index -> private ip of the primary we last routed to
        self.last_primary: Dict[int, str] = {}

    def fetch(self) -> Topology:
        response = self.session.get(self.url, timeout=self.timeout)
        if not 200 <= response.status_code < 300:
            raise requests.HTTPError(f"{self.url} answered {response.status_code}", response=response)
        return Topology.from_dict(response.json())

    def poll(self) -> bool:
        try:
            topology = self.fetch()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Unable to read the topology from %s :: %s", self.url, e)
            return False

        changed = False
        for index, pair in enumerate(topology.pairs):
            if self.last_primary.get(index) == pair.primary.private_ip:
                continue
            logger.info("Follower set config for pair %d to %s", index, pair.primary.private_ip)
            self.proxy.configure(pair.primary.public_ip, pair.ports)
            self.last_primary[index] = pair.primary.private_ip
            changed = True
        return changed
