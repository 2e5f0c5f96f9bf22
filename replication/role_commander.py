import logging
from typing import Optional, Tuple

from config.topology import Endpoint

logger = logging.getLogger(__name__)

# desired upstream meaning "replicate from nobody", i.e. act as primary
UNATTACHED = None

Upstream = Optional[Tuple[str, int]]


class RoleCommander:
    """
    Tells a redis server who it replicates from. Errors from the client
    (UnreachableError / UnexpectedReplyError) go straight back to the caller,
    nothing is retried here.
    """
    def __init__(self, client_factory):
        self.client_factory = client_factory

    def set_role(self, target: Endpoint, port: int, upstream: Upstream = UNATTACHED):
        client = self.client_factory(target.public_ip, port)
        try:
            if upstream is UNATTACHED:
                client.replica_of_no_one()
                logger.info("%s:%d is now a primary", target.public_ip, port)
            else:
                host, upstream_port = upstream
                client.replica_of(host, upstream_port)
                logger.info("%s:%d now replicates from %s:%d", target.public_ip, port, host, upstream_port)
        finally:
            client.close()
