import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from pg_deployer.config import ClusterConfig, load_cluster_config, resolve_environment
from pg_deployer.errors import ConfigurationError, UnknownComponentError

CLUSTER_YAML = """
production:
  version: 15
  user: admin
  ssh_key: ~/.ssh/prod
  primary:
    host: 203.0.113.10
    private_ip: 10.0.0.10
    label: pg-primary
  standby:
    - host: 203.0.113.11
      private_ip: 10.0.0.11
      label: pg-standby-1
    - 203.0.113.12
  components:
    core:
      app_user: shop
      app_database: shop_production
    replication-manager: true
    pooler:
      enabled: true
      pool_mode: session
  secrets:
    repmgr_password: env:REPMGR_PASSWORD

development:
  primary: localhost
"""


class ConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tempdir = tempfile.TemporaryDirectory()
        self.path = Path(self.tempdir.name) / "postgres.yml"
        self.path.write_text(CLUSTER_YAML, encoding="utf-8")
        patcher = mock.patch.dict(os.environ, {}, clear=False)
        patcher.start()
        self.addCleanup(patcher.stop)
        for name in ("PG_DEPLOYER_ENVIRONMENT", "PG_DEPLOYER_SSH_USER", "PG_DEPLOYER_SSH_KEY_PATH", "PG_DEPLOYER_SSH_PORT"):
            os.environ.pop(name, None)

    def tearDown(self) -> None:
        self.tempdir.cleanup()

    def test_loads_environment(self) -> None:
        config = load_cluster_config(str(self.path), "production")
        self.assertEqual(config.environment, "production")
        self.assertEqual(config.version, 15)
        self.assertEqual(config.user, "admin")
        self.assertEqual(config.primary_host, "203.0.113.10")
        self.assertEqual(config.standby_hosts, ["203.0.113.11", "203.0.113.12"])
        self.assertEqual(config.all_hosts[0], "203.0.113.10")
        self.assertEqual(config.app_user, "shop")
        self.assertEqual(config.app_database, "shop_production")
        self.assertEqual(config.component_settings("pooler"), {"pool_mode": "session"})
        self.assertEqual(config.secrets["repmgr_password"], "env:REPMGR_PASSWORD")

    def test_node_ids_follow_standby_order(self) -> None:
        config = load_cluster_config(str(self.path), "production")
        self.assertEqual(config.primary.cluster_node_id, 1)
        self.assertEqual([node.cluster_node_id for node in config.standbys], [2, 3])
        self.assertEqual(config.node_by_label("pg-standby-1").host, "203.0.113.11")
        self.assertEqual(config.replication_host_for("203.0.113.11"), "10.0.0.11")
        self.assertEqual(config.replication_host_for("203.0.113.12"), "203.0.113.12")
        self.assertEqual(config.standbys[1].name, "203.0.113.12")

    def test_core_enabled_by_default(self) -> None:
        config = load_cluster_config(str(self.path), "development")
        self.assertTrue(config.component_enabled("core"))
        self.assertFalse(config.component_enabled("replication-manager"))
        self.assertEqual(config.enabled_components, ["core"])
        self.assertEqual(config.standbys, ())

    def test_environment_variable_selects_environment(self) -> None:
        os.environ["PG_DEPLOYER_ENVIRONMENT"] = "production"
        self.assertEqual(resolve_environment(), "production")
        self.assertEqual(load_cluster_config(str(self.path)).environment, "production")
        self.assertEqual(resolve_environment("staging"), "staging")

    def test_ssh_overrides_from_environment(self) -> None:
        os.environ["PG_DEPLOYER_SSH_USER"] = "ops"
        os.environ["PG_DEPLOYER_SSH_PORT"] = "2222"
        config = load_cluster_config(str(self.path), "production")
        self.assertEqual(config.user, "ops")
        self.assertEqual(config.ssh_port, 2222)

    def test_missing_file_and_environment(self) -> None:
        with self.assertRaises(ConfigurationError):
            load_cluster_config(str(self.path.with_name("absent.yml")), "production")
        with self.assertRaises(ConfigurationError):
            load_cluster_config(str(self.path), "staging")

    def test_invalid_yaml(self) -> None:
        self.path.write_text("production: [unclosed", encoding="utf-8")
        with self.assertRaises(ConfigurationError):
            load_cluster_config(str(self.path), "production")

    def test_unknown_component_rejected(self) -> None:
        with self.assertRaises(UnknownComponentError):
            ClusterConfig.from_dict("test", {"primary": "db1", "components": {"pgpool": True}})

    def test_bad_number_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            ClusterConfig.from_dict("test", {"primary": "db1", "version": "sixteen"})

    def test_standby_without_host_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            ClusterConfig.from_dict("test", {"primary": "db1", "standby": [{"private_ip": "10.0.0.2"}]})


if __name__ == "__main__":
    unittest.main()
