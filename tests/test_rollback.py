import unittest

from pg_deployer.errors import CompensationFailure, ExecutionError
from pg_deployer.rollback import RollbackManager

from fakes import FakeCluster, make_config


class RollbackManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = make_config(standbys=1)
        self.cluster = FakeCluster(self.config)
        self.executor = self.cluster.executor()
        self.manager = RollbackManager(self.config, self.executor)

    def test_actions_run_in_reverse_order(self) -> None:
        calls = []
        self.manager.register("first", lambda: calls.append("first"), host="db-primary.example")
        self.manager.register("second", lambda: calls.append("second"), host="db-standby-1.example")
        self.manager.register("third", lambda: calls.append("third"))

        failures = self.manager.execute_all()

        self.assertEqual(calls, ["third", "second", "first"])
        self.assertEqual(failures, [])
        self.assertEqual(self.manager.pending, [])

    def test_failure_is_reported_and_remaining_actions_still_run(self) -> None:
        calls = []

        def broken() -> None:
            raise RuntimeError("disk gone")

        self.manager.register("first", lambda: calls.append("first"))
        self.manager.register("broken", broken, host="db-primary.example")
        self.manager.register("third", lambda: calls.append("third"))

        failures = self.manager.execute_all()

        self.assertEqual(calls, ["third", "first"])
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], CompensationFailure)
        self.assertEqual(failures[0].description, "broken")
        self.assertEqual(failures[0].host, "db-primary.example")
        self.assertEqual(self.manager.pending, [])

    def test_unreachable_host_becomes_compensation_failure(self) -> None:
        calls = []
        self.cluster.unreachable.add("db-standby-1.example")
        self.manager.register("standby", lambda: calls.append("standby"), host="db-standby-1.example")
        self.manager.register("primary", lambda: calls.append("primary"), host="db-primary.example")

        failures = self.manager.execute_all()

        self.assertEqual(calls, ["primary"])
        self.assertIsInstance(failures[0].cause, ExecutionError)

    def test_with_rollback_reraises_original_error(self) -> None:
        calls = []
        self.manager.register("undo", lambda: calls.append("undo"))

        def body() -> None:
            raise ExecutionError("clone failed", host="db-standby-1.example")

        with self.assertRaises(ExecutionError) as ctx:
            self.manager.with_rollback("deploy", body)

        self.assertEqual(str(ctx.exception), "clone failed")
        self.assertEqual(calls, ["undo"])
        self.assertEqual(self.manager.pending, [])

    def test_with_rollback_clears_on_success(self) -> None:
        calls = []
        self.manager.register("undo", lambda: calls.append("undo"))

        result = self.manager.with_rollback("deploy", lambda: 42)

        self.assertEqual(result, 42)
        self.assertEqual(calls, [])
        self.assertEqual(self.manager.pending, [])

    def test_helper_registrations_issue_cleanup_commands(self) -> None:
        host = "db-primary.example"
        self.manager.register_package_removal(host, ["pgbouncer"])
        self.manager.register_file_removal(host, "/etc/pgbouncer/pgbouncer.ini")
        self.manager.register_directory_removal(host, "/var/lib/pgbackrest")
        self.manager.register_postgres_cluster_removal(host)

        self.manager.execute_all()

        commands = self.cluster.commands_for(host)
        self.assertIn("pg_dropcluster", commands[1])
        self.assertTrue(any("rm -rf /var/lib/pgbackrest" in c for c in commands))
        self.assertTrue(any("rm -f /etc/pgbouncer/pgbouncer.ini" in c for c in commands))
        self.assertIn("pgbouncer", commands[-1])


if __name__ == "__main__":
    unittest.main()
