from config.config_loader import ToggleSettings
from config.topology_store import TopologyStore
from connection.datastore_client import ClientFactory, DataStoreClient
from connection.dry_run_client import DryRunClient
from load_balancer.proxy_config import NginxProxy
from monitoring.failover_manager import FailoverManager
from monitoring.health_checker import HealthChecker
from replication.promotion import PromotionProtocol
from replication.recovery_manager import RecoveryManager
from replication.role_commander import RoleCommander
from replication.sync_client import ReplicationSync


def init_system_components(settings: ToggleSettings) -> dict:
    """
    Wire up the toggle. A follower only needs nginx and the sync client; the
    main toggle gets the whole failover engine. Return a dict with created objects.
    """
    proxy = NginxProxy(
        conf_dir=settings.nginx_dir,
        conf_file=settings.nginx_conf_file,
        reload_command=settings.reload_command,
        testing=settings.testing,
    )

    if settings.follower:
        sync = ReplicationSync(settings.main_address, settings.status_port, proxy, timeout=settings.sync_timeout)
        return {
            "proxy": proxy,
            "replication_sync": sync,
        }

    # in testing mode role changes are only logged
    client_cls = DryRunClient if settings.testing else DataStoreClient
    factory = ClientFactory(settings.connect_timeout, settings.command_timeout, client_cls)

    store = TopologyStore(settings.config_file)
    checker = HealthChecker(factory)
    commander = RoleCommander(factory)
    recovery = RecoveryManager(commander, backoff=settings.retry_backoff,
                               cancel_wait=settings.connect_timeout + settings.command_timeout)
    promotion = PromotionProtocol(store, commander, recovery, proxy)
    failover = FailoverManager(store, checker, promotion, commander, proxy, retry_seconds=settings.retry)

    return {
        "proxy": proxy,
        "client_factory": factory,
        "topology_store": store,
        "health_checker": checker,
        "role_commander": commander,
        "recovery_manager": recovery,
        "promotion": promotion,
        "failover_manager": failover,
    }
