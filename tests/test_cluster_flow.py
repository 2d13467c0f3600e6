"""Tests for the full cluster deployment flow."""

import threading

import pytest

from pg_deployer.errors import (
    ConfigurationError,
    ExecutionError,
    OperationTimeoutError,
    UnknownComponentError,
    ValidationFailure,
)
from pg_deployer.flows import ClusterDeploymentFlow, FlowOutcome, FlowState
from pg_deployer.interaction import AutoResponseHandler

from fakes import FakeCluster, make_config, make_context

PRIMARY = "db-primary.example"
STANDBY_1 = "db-standby-1.example"
STANDBY_2 = "db-standby-2.example"

ALL_COMPONENTS = {
    "core": {"enabled": True, "app_user": "appuser", "app_database": "appdb"},
    "replication-manager": True,
    "pooler": True,
    "backup-agent": True,
    "monitoring": True,
    "tls": True,
    "extensions": {"enabled": True, "list": ["pgvector"]},
}
ALL_SECRETS = {"repmgr_password": "repl-pass", "app_password": "app-pass"}


def last_index(cluster: FakeCluster, fragment: str) -> int:
    matches = [i for i, (_, command) in enumerate(cluster.commands) if fragment in command]
    assert matches, f"no command containing {fragment!r}"
    return matches[-1]


class TestClusterDeployment:
    def test_components_deploy_in_order(self):
        config = make_config(standbys=2, components=ALL_COMPONENTS, secrets=ALL_SECRETS)
        context, cluster = make_context(config)
        flow = ClusterDeploymentFlow(context)

        assert flow.execute() == FlowOutcome.SUCCEEDED

        steps = [
            cluster.command_index("mkdir -p /etc/ssl/pg-deployer", PRIMARY),
            cluster.command_index("postgresql-16 postgresql-client-16", PRIMARY),
            cluster.command_index("primary register --force", PRIMARY),
            cluster.command_index("standby register --force", STANDBY_1),
            cluster.command_index("standby register --force", STANDBY_2),
            cluster.command_index("apt-get install -y -qq pgbouncer", PRIMARY),
            cluster.command_index("stanza-create", PRIMARY),
            cluster.command_index("systemctl enable prometheus-postgres-exporter"),
            cluster.command_index("CREATE EXTENSION IF NOT EXISTS"),
            last_index(cluster, "ON_ERROR_STOP=1"),
        ]
        assert steps == sorted(steps)
        assert flow.history == [
            FlowState.INIT,
            FlowState.HEADER_PRINTED,
            FlowState.VALIDATED,
            FlowState.PLAN_PRINTED,
            FlowState.AWAITING_CONFIRMATION,
            FlowState.EXECUTING,
            FlowState.SUCCEEDED,
        ]

    def test_application_user_is_provisioned_once_on_primary(self):
        config = make_config(standbys=2, components=ALL_COMPONENTS, secrets=ALL_SECRETS)
        context, cluster = make_context(config)
        ClusterDeploymentFlow(context).execute()

        provisioning = [upload for upload in cluster.uploads if "CREATE ROLE appuser" in upload[2]]
        assert len(provisioning) == 1
        assert provisioning[0][0] == PRIMARY

    def test_pooler_only_on_primary_and_stack_cleared(self):
        config = make_config(standbys=2, components=ALL_COMPONENTS, secrets=ALL_SECRETS)
        context, cluster = make_context(config)
        ClusterDeploymentFlow(context).execute()

        assert cluster.ran("pgbouncer", host=PRIMARY)
        assert not cluster.ran("pgbouncer", host=STANDBY_1)
        assert not cluster.ran("pgbouncer", host=STANDBY_2)
        assert context.rollback.pending == []

    def test_standby_packages_installed_but_cluster_cloned(self):
        config = make_config(standbys=1)
        context, cluster = make_context(config)
        ClusterDeploymentFlow(context).execute()

        assert cluster.ran("postgresql-16 postgresql-client-16", host=STANDBY_1)
        assert cluster.ran("standby clone --force", host=STANDBY_1)
        assert not cluster.ran("pg_createcluster", host=STANDBY_1)

    def test_zero_standbys_never_invokes_replication_manager(self):
        config = make_config(standbys=0)
        context, cluster = make_context(config)
        flow = ClusterDeploymentFlow(context)

        assert flow.execute() == FlowOutcome.SUCCEEDED
        assert flow.target_hosts() == [PRIMARY]
        assert not any("repmgr" in command for _, command in cluster.commands)
        assert any("no standby hosts configured" in w for w in flow.validation_result.warnings)
        settings = [content for _, path, content in cluster.uploads if path.endswith("00-pg-deployer.conf")]
        assert settings and "shared_preload_libraries" not in settings[0]

    def test_pooler_prepare_failure_rolls_back_earlier_components_in_reverse(self):
        """The pooler fails before registering anything, so only earlier components compensate."""
        components = {"core": True, "replication-manager": True, "tls": True, "pooler": True}
        config = make_config(standbys=2, components=components)
        cluster = FakeCluster(config)
        cluster.fail("SHOW max_connections", stderr="connection refused")
        context, _ = make_context(config, cluster)
        flow = ClusterDeploymentFlow(context)

        with pytest.raises(ExecutionError) as excinfo:
            flow.execute()

        assert "SHOW max_connections" in excinfo.value.command
        assert flow.state == FlowState.ROLLED_BACK
        assert context.rollback.pending == []

        failed_at = cluster.command_index("SHOW max_connections")
        compensation = cluster.commands[failed_at + 1:]
        assert compensation[0] == (STANDBY_2, "sudo systemctl stop repmgrd || true")
        assert compensation[-1] == (PRIMARY, "sudo rm -rf /etc/ssl/pg-deployer")
        assert not any("pgbouncer" in command for _, command in compensation)

        commands = [command for _, command in compensation]
        last_repmgr = max(i for i, c in enumerate(commands) if "repmgr" in c)
        first_core = min(i for i, c in enumerate(commands) if "00-pg-deployer.conf" in c)
        first_tls = min(i for i, c in enumerate(commands) if "/etc/ssl/pg-deployer" in c)
        assert last_repmgr < first_core < first_tls
        tls_hosts = [host for host, c in compensation if "rm -rf /etc/ssl/pg-deployer" in c]
        assert tls_hosts == [STANDBY_2, STANDBY_1, PRIMARY]

    def test_pooler_install_failure_also_uninstalls_the_pooler(self):
        components = {"core": True, "replication-manager": True, "tls": True, "pooler": True}
        config = make_config(standbys=1, components=components)
        cluster = FakeCluster(config)
        cluster.fail("systemctl restart pgbouncer", stderr="Job for pgbouncer.service failed")
        context, _ = make_context(config, cluster)
        flow = ClusterDeploymentFlow(context)

        with pytest.raises(ExecutionError):
            flow.execute()

        assert flow.state == FlowState.ROLLED_BACK
        assert context.rollback.pending == []
        failed_at = cluster.command_index("systemctl restart pgbouncer")
        compensation = cluster.commands[failed_at + 1:]
        assert compensation[0] == (PRIMARY, "sudo systemctl stop pgbouncer || true")
        assert compensation[1] == (PRIMARY, "sudo apt-get remove -y -qq pgbouncer")
        assert compensation[-1] == (PRIMARY, "sudo rm -rf /etc/ssl/pg-deployer")

    def test_missing_rollback_manager_is_a_configuration_error(self):
        config = make_config(standbys=0)
        context, cluster = make_context(config, skip_validation=True)
        context.rollback = None
        flow = ClusterDeploymentFlow(context)

        with pytest.raises(ConfigurationError):
            flow.execute()
        assert not cluster.ran("apt-get")

    def test_declined_confirmation_cancels_without_changes(self):
        config = make_config(standbys=1)
        interaction = AutoResponseHandler(always_confirm=False)
        context, cluster = make_context(config, interaction=interaction)
        flow = ClusterDeploymentFlow(context)

        assert flow.execute() == FlowOutcome.CANCELLED
        assert flow.state == FlowState.CANCELLED
        assert len(interaction.requests) == 1
        assert not cluster.ran("apt-get")
        assert cluster.uploads == []

    def test_assume_yes_skips_prompt(self):
        config = make_config(standbys=1)
        interaction = AutoResponseHandler(always_confirm=False)
        context, _ = make_context(config, interaction=interaction, assume_yes=True)

        assert ClusterDeploymentFlow(context).execute() == FlowOutcome.SUCCEEDED
        assert interaction.requests == []

    def test_dry_run_stops_after_plan(self):
        config = make_config(standbys=2, components=ALL_COMPONENTS, secrets=ALL_SECRETS)
        interaction = AutoResponseHandler()
        context, cluster = make_context(config, interaction=interaction)
        flow = ClusterDeploymentFlow(context)

        assert flow.execute(dry_run=True) == FlowOutcome.DRY_RUN
        assert flow.state == FlowState.PLAN_PRINTED
        assert interaction.requests == []
        assert not cluster.ran("apt-get")
        steps = flow.list_deployment_steps()
        assert steps[0].startswith("Install tls")
        assert steps[-1] == "Create application user and database on the primary"

    def test_structural_error_aborts_before_remote_calls(self):
        config = make_config(standbys=1, version=11)
        context, cluster = make_context(config)

        with pytest.raises(ConfigurationError):
            ClusterDeploymentFlow(context).execute()
        assert cluster.commands == []

    def test_validation_failure_stops_before_execution(self):
        config = make_config(standbys=1)
        cluster = FakeCluster(config)
        cluster.unreachable.add(STANDBY_1)
        context, _ = make_context(config, cluster)
        flow = ClusterDeploymentFlow(context)

        with pytest.raises(ValidationFailure) as excinfo:
            flow.execute()
        assert any(STANDBY_1 in error for error in excinfo.value.result.errors)
        assert FlowState.EXECUTING not in flow.history
        assert not cluster.ran("apt-get")

    def test_skip_validation_runs_no_probe(self):
        config = make_config(standbys=0)
        context, cluster = make_context(config, skip_validation=True)
        ClusterDeploymentFlow(context).execute()
        assert not cluster.ran("SSH connection test")

    def test_only_deploys_single_component(self):
        components = {"core": True, "monitoring": True}
        config = make_config(standbys=1, components=components)
        context, cluster = make_context(config)
        flow = ClusterDeploymentFlow(context, only="Monitoring")

        assert flow.execute() == FlowOutcome.SUCCEEDED
        assert cluster.ran("prometheus-postgres-exporter", host=STANDBY_1)
        assert not cluster.ran("postgresql-client-16")

    def test_only_rejects_unknown_and_disabled_components(self):
        config = make_config(standbys=1)
        context, cluster = make_context(config)
        with pytest.raises(UnknownComponentError):
            ClusterDeploymentFlow(context, only="pgpool")
        with pytest.raises(ConfigurationError):
            ClusterDeploymentFlow(context, only="monitoring").execute()
        assert cluster.commands == []

    def test_timeout_rolls_back_and_stops_further_commands(self):
        config = make_config(standbys=0, components={"core": True, "tls": True})
        cluster = FakeCluster(config)
        release = threading.Event()
        cluster.respond("apt-get update", hook=lambda host, command: release.wait(5))
        context, _ = make_context(config, cluster, skip_validation=True, timeout=0.3)
        flow = ClusterDeploymentFlow(context)
        timer = threading.Timer(0.6, release.set)
        timer.start()

        try:
            with pytest.raises(OperationTimeoutError):
                flow.execute()
        finally:
            timer.cancel()
            release.set()

        assert flow.state == FlowState.ROLLED_BACK
        assert cluster.ran("rm -f /etc/postgresql/16/main/conf.d/00-pg-deployer.conf")
        assert cluster.ran("rm -rf /etc/ssl/pg-deployer")
        assert not cluster.ran("gnupg")

    def test_timeout_compensates_after_in_flight_command_returns(self):
        config = make_config(standbys=0, components={"core": True, "tls": True})
        cluster = FakeCluster(config)
        events = []
        release = threading.Event()

        def slow_openssl(host, command):
            release.wait(5)
            events.append("openssl finished")

        cluster.respond("openssl req", hook=slow_openssl)
        cluster.respond(
            "rm -rf /etc/ssl/pg-deployer", hook=lambda host, command: events.append("tls compensation ran")
        )
        context, _ = make_context(config, cluster, skip_validation=True, timeout=0.3)
        registering_threads = []
        register = context.rollback.register

        def recording_register(*args, **kwargs):
            registering_threads.append(threading.current_thread().name)
            return register(*args, **kwargs)

        context.rollback.register = recording_register
        flow = ClusterDeploymentFlow(context)
        timer = threading.Timer(0.6, release.set)
        timer.start()

        try:
            with pytest.raises(OperationTimeoutError):
                flow.execute()
        finally:
            timer.cancel()
            release.set()

        assert events == ["openssl finished", "tls compensation ran"]
        assert registering_threads
        assert set(registering_threads) == {threading.main_thread().name}
        assert not cluster.ran("chmod 644 /etc/ssl/pg-deployer/server.crt")
