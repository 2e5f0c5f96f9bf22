'''
NginxProxy owns the nginx stream config that routes every redis port to the
current primary. There is a single config file per toggle instance, listing an
upstream/server block for every port this instance knows about, and nginx is
reloaded after each write.

Nothing here raises: a failed write or reload is logged and the toggle carries on.
'''

import logging
import os
import subprocess
import threading
from string import Template
from typing import Dict, Iterable, Sequence

logger = logging.getLogger(__name__)

UPSTREAM_PROXY = Template("""
    upstream redis_${port} {
        server ${address}:${port};
    }

    server {
        listen ${port};
        proxy_pass redis_${port};
    }

""")


class NginxProxy:
    def __init__(self, conf_dir: str = "/etc/nginx/tcpconf.d", conf_file: str = "toggle",
                 reload_command: Sequence[str] = ("systemctl", "reload", "nginx"),
                 testing: bool = False, runner=subprocess.run):
        self.conf_dir = conf_dir
        self.conf_file = conf_file
        self.reload_command = list(reload_command)
        self.testing = testing
        self.runner = runner
        self._routes: Dict[int, str] = {}
        self._lock = threading.Lock()

    @property
    def path(self) -> str:
        return os.path.join(self.conf_dir, self.conf_file)

    def routes(self) -> Dict[int, str]:
        with self._lock:
            return dict(self._routes)

    def render(self) -> str:
        with self._lock:
            routes = sorted(self._routes.items())
        return "".join(UPSTREAM_PROXY.substitute(port=port, address=address) for port, address in routes)

    def configure(self, address: str, ports: Iterable[int]):
        ports = list(ports)
        with self._lock:
            for port in ports:
                self._routes[port] = address
        content = self.render()

        try:
            os.makedirs(self.conf_dir, exist_ok=True)
            with open(self.path, "w") as f:
                f.write(content)
        except OSError as e:
            logger.error("Unable to write nginx config %s :: %s", self.path, e)
            return

        logger.info("nginx now routes ports %s to %s", ports, address)
        if self.testing:
            logger.info("(TEST MODE) skipping nginx reload")
            return
        self.reload()

    def reload(self):
        try:
            self.runner(self.reload_command, check=True, capture_output=True)
        except (OSError, subprocess.CalledProcessError) as e:
            logger.error("Unable to reload nginx with %s :: %s", " ".join(self.reload_command), e)
