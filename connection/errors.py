'''
Errors raised while talking to a redis node. Every call site in the failover
engine catches ToggleError: a routine tick never dies because a node is down.
'''


class ToggleError(Exception):
    """Base class for errors coming back from a redis node."""


class UnreachableError(ToggleError):
    """Connecting to the node, or the transport itself, failed."""

    def __init__(self, host: str, port: int, reason: str):
        super().__init__(f"Unable to reach redis server {host}:{port} :: {reason}")
        self.host = host
        self.port = port


class UnexpectedReplyError(ToggleError):
    """The node answered, but not with what we asked for."""

    def __init__(self, host: str, port: int, command: str, reply):
        super().__init__(f"Unexpected reply to {command} from {host}:{port} :: {reply!r}")
        self.host = host
        self.port = port
        self.command = command
        self.reply = reply
