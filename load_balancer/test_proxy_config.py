import subprocess

from load_balancer.proxy_config import NginxProxy


class FakeRunner:
    def __init__(self, error=None):
        self.error = error
        self.commands = []

    def __call__(self, command, check=False, capture_output=False):
        self.commands.append(command)
        if self.error is not None:
            raise self.error


def test_writes_one_block_per_port(tmp_path):
    runner = FakeRunner()
    proxy = NginxProxy(conf_dir=str(tmp_path / "tcpconf.d"), runner=runner)

    proxy.configure("10.0.0.2", [6379, 6380])

    content = (tmp_path / "tcpconf.d" / "toggle").read_text()
    assert "upstream redis_6379 {" in content
    assert "server 10.0.0.2:6379;" in content
    assert "server 10.0.0.2:6380;" in content
    assert "listen 6380;" in content
    assert "proxy_pass redis_6380;" in content
    assert runner.commands == [["systemctl", "reload", "nginx"]]


def test_pairs_share_the_file(tmp_path):
    proxy = NginxProxy(conf_dir=str(tmp_path), runner=FakeRunner())

    proxy.configure("10.0.0.1", [6379])
    proxy.configure("10.0.0.3", [6390])
    proxy.configure("10.0.0.2", [6379])

    content = (tmp_path / "toggle").read_text()
    assert proxy.routes() == {6379: "10.0.0.2", 6390: "10.0.0.3"}
    assert "server 10.0.0.3:6390;" in content
    assert "server 10.0.0.2:6379;" in content
    assert "10.0.0.1" not in content


def test_testing_mode_skips_reload(tmp_path):
    runner = FakeRunner()
    proxy = NginxProxy(conf_dir=str(tmp_path), testing=True, runner=runner)

    proxy.configure("10.0.0.2", [6379])

    assert (tmp_path / "toggle").exists()
    assert runner.commands == []


def test_errors_are_logged_not_raised(tmp_path, caplog):
    blocker = tmp_path / "file"
    blocker.write_text("")
    runner = FakeRunner()

    NginxProxy(conf_dir=str(blocker / "sub"), runner=runner).configure("10.0.0.2", [6379])
    assert runner.commands == []
    assert "Unable to write nginx config" in caplog.text

    failing = FakeRunner(error=subprocess.CalledProcessError(1, ["systemctl"]))
    NginxProxy(conf_dir=str(tmp_path), runner=failing).configure("10.0.0.2", [6379])
    assert "Unable to reload nginx" in caplog.text

    missing = FakeRunner(error=FileNotFoundError("systemctl"))
    NginxProxy(conf_dir=str(tmp_path), runner=missing).configure("10.0.0.2", [6379])
