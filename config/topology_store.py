'''
TopologyStore keeps the one copy of the topology the toggle works from, and
its JSON snapshot on disk. The file is read once at startup and overwritten
wholesale after every switch.
'''

import json
import logging
import os
import stat
import tempfile
import threading
from typing import List, Optional

from config.topology import RedisPair, Topology, TopologyError

logger = logging.getLogger(__name__)

DEFAULT_FILE_MODE = 0o644


class ConfigPersistError(Exception):
    """The snapshot couldn't be written. The in-memory topology is still right."""


class TopologyStore:
    def __init__(self, path: str = "toggle.conf", topology: Optional[Topology] = None):
        self.path = path
        self._topology = topology
        self._lock = threading.Lock()

    def load(self) -> Topology:
        try:
            with open(self.path, "r", encoding="utf-8") as file:
                data = json.load(file)
        except FileNotFoundError as e:
            raise TopologyError(f"topology file {self.path} does not exist") from e
        except json.JSONDecodeError as e:
            raise TopologyError(f"topology file {self.path} is not valid JSON: {e}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise TopologyError(f"unable to read topology file {self.path}: {e}") from e

        topology = Topology.from_dict(data)
        with self._lock:
            self._topology = topology
        logger.info("Loaded %d redis pair(s) from %s", len(topology.pairs), self.path)
        return self.snapshot()

    def snapshot(self) -> Topology:
        """Deep copy of the current topology, safe to hand to other threads."""
        with self._lock:
            if self._topology is None:
                raise TopologyError("no topology loaded")
            return self._topology.model_copy(deep=True)

    def pairs(self) -> List[RedisPair]:
        return self.snapshot().pairs

    def swap(self, index: int) -> RedisPair:
        with self._lock:
            if self._topology is None:
                raise TopologyError("no topology loaded")
            pair = self._topology.pairs[index].swapped()
            self._topology.pairs[index] = pair
            return pair.model_copy(deep=True)

    def save(self):
        data = self.snapshot().to_dict()
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            mode = self._file_mode()
            fd, tmp_path = tempfile.mkstemp(prefix=".toggle-", dir=directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as file:
                    json.dump(data, file, indent=4)
                # mkstemp creates 0600, keep what the file had before
                os.chmod(tmp_path, mode)
                os.replace(tmp_path, self.path)
            except BaseException:
                os.unlink(tmp_path)
                raise
        except OSError as e:
            raise ConfigPersistError(f"unable to write topology to {self.path}: {e}") from e
        logger.info("Wrote new topology to %s", self.path)

    def _file_mode(self) -> int:
        try:
            return stat.S_IMODE(os.stat(self.path).st_mode)
        except FileNotFoundError:
            return DEFAULT_FILE_MODE

    def persist(self) -> bool:
        try:
            self.save()
            return True
        except ConfigPersistError as e:
            logger.error("%s", e)
            return False
