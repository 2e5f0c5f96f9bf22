'''
DataStoreClient is the only place that speaks to redis. A client is opened for a
single check or command and closed right after: the failover engine never keeps
connections to a node it may be about to declare dead.
'''

from typing import Optional, Tuple

import redis
from redis.backoff import NoBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.retry import Retry

from connection.errors import UnexpectedReplyError, UnreachableError

# REPLICAOF takes these two literal tokens to detach a replica and make it a primary
NO_ONE: Tuple[str, str] = ("no", "one")

DEFAULT_CONNECT_TIMEOUT = 2.0
DEFAULT_COMMAND_TIMEOUT = 2.0


class DataStoreClient:
    def __init__(self, host: str, port: int,
                 connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
                 command_timeout: float = DEFAULT_COMMAND_TIMEOUT):
        self.host = host
        self.port = port
        self._redis = redis.Redis(
            host=host,
            port=port,
            socket_connect_timeout=connect_timeout,
            socket_timeout=command_timeout,
            decode_responses=True,
            # one attempt per command, bounded by the timeouts above
            retry=Retry(NoBackoff(), 0),
            retry_on_timeout=False,
        )

    def _call(self, command: str, fn):
        try:
            return fn()
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            raise UnreachableError(self.host, self.port, str(e)) from e
        except RedisError as e:
            raise UnexpectedReplyError(self.host, self.port, command, str(e)) from e

    def ping(self) -> None:
        # redis-py turns a PONG into True
        reply = self._call("PING", self._redis.ping)
        if reply is not True:
            raise UnexpectedReplyError(self.host, self.port, "PING", reply)

    def set(self, key: str, value: str) -> None:
        reply = self._call("SET", lambda: self._redis.set(key, value))
        if not reply:
            raise UnexpectedReplyError(self.host, self.port, "SET", reply)

    def replica_of(self, host: str, port: int) -> None:
        self._replicaof(host, str(port))

    def replica_of_no_one(self) -> None:
        self._replicaof(*NO_ONE)

    def _replicaof(self, *args: str) -> None:
        command = "REPLICAOF " + " ".join(args)
        reply = self._call(command, lambda: self._redis.execute_command("REPLICAOF", *args))
        # "OK" or "OK Already connected to specified master"
        if reply is True or (isinstance(reply, str) and reply.startswith("OK")):
            return
        raise UnexpectedReplyError(self.host, self.port, command, reply)

    def close(self) -> None:
        try:
            self._redis.close()
        except RedisError:
            pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class ClientFactory:
    """
    Creates a fresh DataStoreClient per call with the configured timeouts.
    Both the health probe and the role commander take one of these.
    """
    def __init__(self, connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
                 command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
                 client_cls: Optional[type] = None):
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.client_cls = client_cls or DataStoreClient

    def __call__(self, host: str, port: int):
        return self.client_cls(host, port, self.connect_timeout, self.command_timeout)
