'''
RecoveryManager brings a lost primary back into its pair after a switch. The old
primary is down when we switch away from it, so for every port we start a
RetryTask that keeps telling it who the new primary is until it finally answers.
Time is not critical here: whenever the server comes back it starts replicating
from where it left off.

There is at most one live task per (server, port). Scheduling a new one for the
same key cancels the previous one, and promoting a server cancels every task that
would demote it.
'''

import logging
import threading
from typing import Dict, List, Optional, Tuple

from config.topology import Endpoint
from connection.errors import ToggleError

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF = 5.0
# how long cancel_for waits for a REPLICAOF already on the wire
DEFAULT_CANCEL_WAIT = 4.0

TaskKey = Tuple[str, int]


class RetryTask:
    def __init__(self, commander, target: Endpoint, port: int, upstream: Tuple[str, int],
                 backoff: float = DEFAULT_BACKOFF, on_done=None):
        self.commander = commander
        self.target = target
        self.port = port
        self.upstream = upstream
        self.backoff = backoff
        self.on_done = on_done

        self.attempts = 0
        self.succeeded = False
        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def key(self) -> TaskKey:
        return (self.target.public_ip, self.port)

    def start(self):
        # daemon: abandoned at exit, the next start re-asserts roles anyway
        self._thread = threading.Thread(
            target=self.run, name=f"retry-{self.target.public_ip}:{self.port}", daemon=True
        )
        self._thread.start()

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: Optional[float] = None):
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self):
        host, upstream_port = self.upstream
        try:
            while not self._cancelled.is_set():
                self.attempts += 1
                try:
                    self.commander.set_role(self.target, self.port, self.upstream)
                except ToggleError as e:
                    logger.debug("Old primary %s:%d still not answering (attempt %d) :: %s",
                                 self.target.public_ip, self.port, self.attempts, e)
                    if self._cancelled.wait(self.backoff):
                        break
                    continue

                self.succeeded = True
                logger.info("Old primary %s:%d converted to replica of %s:%d after %d attempt(s)",
                            self.target.public_ip, self.port, host, upstream_port, self.attempts)
                return
            logger.info("Stopped trying to convert %s:%d to replica of %s:%d",
                        self.target.public_ip, self.port, host, upstream_port)
        finally:
            if self.on_done is not None:
                self.on_done(self)


class RecoveryManager:
    def __init__(self, commander, backoff: float = DEFAULT_BACKOFF, cancel_wait: float = DEFAULT_CANCEL_WAIT):
        self.commander = commander
        self.backoff = backoff
        self.cancel_wait = cancel_wait
        self._tasks: Dict[TaskKey, RetryTask] = {}
        self._lock = threading.Lock()

    def schedule(self, target: Endpoint, port: int, upstream: Tuple[str, int]) -> RetryTask:
        task = RetryTask(self.commander, target, port, upstream, self.backoff, on_done=self._forget)
        with self._lock:
            previous = self._tasks.get(task.key)
            if previous is not None:
                logger.info("Replacing pending retry for %s:%d", target.public_ip, port)
                previous.cancel()
            self._tasks[task.key] = task
        task.start()
        return task

    def _forget(self, task: RetryTask):
        with self._lock:
            if self._tasks.get(task.key) is task:
                del self._tasks[task.key]

    def cancel_for(self, target: Endpoint) -> List[RetryTask]:
        """
        Cancel every task aimed at `target` and wait for them to stop, so no
        command they already sent can land after this returns. Returns the
        cancelled tasks.
        """
        with self._lock:
            doomed = [task for key, task in self._tasks.items() if key[0] == target.public_ip]
            for task in doomed:
                del self._tasks[task.key]
        for task in doomed:
            task.cancel()
        if doomed:
            logger.info("Cancelled %d pending retry task(s) for %s", len(doomed), target.public_ip)
        for task in doomed:
            task.join(self.cancel_wait)
            if task.is_alive():
                logger.warning("Retry for %s:%d did not stop within %.1fs",
                               task.target.public_ip, task.port, self.cancel_wait)
        return doomed

    def cancel_all(self):
        with self._lock:
            doomed = list(self._tasks.values())
            self._tasks.clear()
        for task in doomed:
            task.cancel()

    def active(self) -> List[TaskKey]:
        with self._lock:
            return sorted(self._tasks)

    def get(self, target: Endpoint, port: int) -> Optional[RetryTask]:
        with self._lock:
            return self._tasks.get((target.public_ip, port))
