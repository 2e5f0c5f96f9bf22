'''
Topology describes the redis pairs the toggle watches. Each pair is two nodes
holding the same set of ports: if a node is bad we assume every one of its
ports is bad and switch all of them together.

The file on disk has had three shapes over time. They are all accepted by
Topology.from_dict and always written back in the current (version 2) shape:

    version 2   {"version": 2, "pairs": [{"primary": {...}, "secondary": {...}, "ports": [...]}]}
    version 1   {"main": {...}, "subordinate": {...}, "ports": [...]}
                ("master" / "slave" are accepted as well)
    version 0   {"redis": [{"master": {"public_ip", "private_ip", "port"}, "slave": {...}}]}
'''

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

CURRENT_VERSION = 2


class TopologyError(ValueError):
    """The topology file can't be understood or breaks an invariant."""


class Endpoint(BaseModel):
    """
    Two addresses for the same node. private_ip is handed to the other node in
    REPLICAOF, public_ip is what we probe and what nginx routes to.
    """
    public_ip: str = ""
    private_ip: str = ""

    @model_validator(mode="after")
    def _collapse_addresses(self):
        self.public_ip = (self.public_ip or "").strip()
        self.private_ip = (self.private_ip or "").strip()
        if not self.public_ip:
            self.public_ip = self.private_ip
        if not self.private_ip:
            self.private_ip = self.public_ip
        if not self.public_ip:
            raise ValueError("a server needs a public_ip or a private_ip")
        return self


class RedisPair(BaseModel):
    primary: Endpoint
    secondary: Endpoint
    ports: List[int] = Field(min_length=1)

    @field_validator("ports")
    @classmethod
    def _check_ports(cls, ports: List[int]) -> List[int]:
        for port in ports:
            if not 0 < port < 65536:
                raise ValueError(f"port {port} is out of range")
        if len(set(ports)) != len(ports):
            raise ValueError("ports must not repeat")
        return ports

    @model_validator(mode="after")
    def _distinct_nodes(self):
        if self.primary.public_ip == self.secondary.public_ip:
            raise ValueError("primary and secondary must be different servers")
        return self

    def swapped(self) -> "RedisPair":
        return RedisPair(primary=self.secondary, secondary=self.primary, ports=list(self.ports))


class Topology(BaseModel):
    version: Literal[2] = CURRENT_VERSION
    pairs: List[RedisPair] = Field(min_length=1)

    @classmethod
    def from_dict(cls, data: Any) -> "Topology":
        if not isinstance(data, dict):
            raise TopologyError("topology must be a JSON object")
        try:
            if "pairs" in data:
                return cls.model_validate(data)
            if "redis" in data:
                return cls(pairs=[_pair_from_v0(entry) for entry in data["redis"] or []])
            if ("main" in data or "master" in data) and ("subordinate" in data or "slave" in data):
                return cls(pairs=[_pair_from_v1(data)])
        except ValidationError as e:
            raise TopologyError(str(e)) from e
        raise TopologyError("unknown topology layout, expected 'pairs', 'redis' or 'main'/'subordinate'")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def all_ports(self) -> List[int]:
        return [port for pair in self.pairs for port in pair.ports]


def _pair_from_v1(data: dict) -> RedisPair:
    return RedisPair(
        primary=data.get("main") or data.get("master") or {},
        secondary=data.get("subordinate") or data.get("slave") or {},
        ports=data.get("ports") or [],
    )


def _pair_from_v0(entry: dict) -> RedisPair:
    if not isinstance(entry, dict):
        raise TopologyError("each 'redis' entry must be an object")
    master = dict(entry.get("master") or {})
    slave = dict(entry.get("slave") or {})
    master_port = master.pop("port", None)
    slave_port = slave.pop("port", None)
    if master_port is None or master_port != slave_port:
        raise TopologyError(f"master and slave must share a port, got {master_port} and {slave_port}")
    return RedisPair(primary=master, secondary=slave, ports=[master_port])
