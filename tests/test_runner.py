"""
Tests for cloudmanager.runner module
"""

import pytest
from unittest.mock import MagicMock, patch

from conftest import NODE1, NODE2, NODE3, build_state


def _request(**data):
    from cloudmanager.commands import parse_request

    return parse_request(data)


def _factory(manager):
    """manager_factory returning a context manager around mock_manager."""
    factory = MagicMock()
    factory.return_value.__enter__.return_value = manager
    factory.return_value.__exit__.return_value = False
    return factory


class TestPlanRequest:
    """Tests for turning requests into Operations."""

    def test_clone_resolves_nodes(self, mock_manager):
        from cloudmanager.runner import plan_request

        state = build_state([NODE1, NODE2, NODE3], {"c1": {"s1": [(NODE1, "active", True)]}})
        op = plan_request(_request(command="clone", source="10.0.0.1", target="10.0.0.3:8983"),
                          mock_manager, state)

        assert [(a.slice, a.node, a.wait_for_replication) for a in op] == [("s1", NODE3, True)]

    def test_migrate_from_dead_node(self, mock_manager):
        from cloudmanager.actions import AddReplica, DeleteReplica
        from cloudmanager.runner import plan_request

        state = build_state(
            [NODE1, NODE3],
            {"c1": {"s1": [(NODE1, "active", True), (NODE2, "down", False)]}},
        )
        op = plan_request(
            _request(command="migratenode", source=NODE2, target=NODE3, safety_factor=1),
            mock_manager,
            state,
        )

        assert list(op) == [AddReplica("c1", "s1", NODE3), DeleteReplica("c1", "s1", NODE2, 1)]

    def test_clean_several_nodes(self, mock_manager, two_node_state):
        from cloudmanager.runner import plan_request

        op = plan_request(_request(command="clean", nodes=[NODE1, NODE2], collection="c1"),
                          mock_manager, two_node_state)

        assert [a.node for a in op] == [NODE1, NODE1, NODE2, NODE2]

    def test_populate_with_wipe(self, mock_manager):
        from cloudmanager.actions import AddReplica, DeleteReplica
        from cloudmanager.runner import plan_request

        state = build_state(
            [NODE1, NODE2, NODE3],
            {"c1": {"s1": [(NODE1, "active", True)], "s2": [(NODE1, "active", True)]}},
        )

        op = plan_request(_request(command="populate", collection="c1", slices_per_node=2, wipe=True),
                          mock_manager, state)

        kinds = [type(a) for a in op]
        assert kinds == [AddReplica] * 4 + [DeleteReplica] * 2
        assert {a.node for a in op.actions[4:]} == {NODE1}

    def test_populate_needs_single_origin(self, mock_manager, two_node_state):
        from cloudmanager.errors import PlanningError
        from cloudmanager.runner import plan_request

        with pytest.raises(PlanningError, match="single indexer"):
            plan_request(_request(command="populate", collection="c1", slices_per_node=1),
                         mock_manager, two_node_state)

    def test_alias(self, mock_manager, two_node_state):
        from cloudmanager.actions import UpdateAlias
        from cloudmanager.runner import plan_request

        op = plan_request(_request(command="alias", alias="live", collections="c1,c2"),
                          mock_manager, two_node_state)

        assert list(op) == [UpdateAlias("live", ("c1", "c2"))]

    def test_create_collection(self, mock_manager, two_node_state):
        from cloudmanager.runner import plan_request

        op = plan_request(
            _request(command="createcollection", collection="c2", slices=2,
                     config_name="conf1", nodes="10.0.0.1,10.0.0.2"),
            mock_manager,
            two_node_state,
        )

        assert op.actions[0].node_set == (NODE1, NODE2)

    def test_create_collection_missing_config(self, mock_manager, two_node_state):
        from cloudmanager.errors import PlanningError
        from cloudmanager.runner import plan_request

        mock_manager.config_exists.return_value = False

        with pytest.raises(PlanningError, match="conf9"):
            plan_request(_request(command="createcollection", collection="c2", slices=1, config_name="conf9"),
                         mock_manager, two_node_state)

    def test_copy_into_missing_collection(self, mock_manager, two_node_state):
        from cloudmanager.errors import PlanningError
        from cloudmanager.runner import plan_request

        with pytest.raises(PlanningError, match="non-existent"):
            plan_request(_request(command="copy", collection="c9", copy_from="old:8983"),
                         mock_manager, two_node_state)

    def test_backup_and_restore(self, mock_manager, two_node_state):
        from cloudmanager.runner import plan_request

        backup = plan_request(_request(command="backupindex", collection="c1", directory="/b", keep=4),
                              mock_manager, two_node_state)
        restore = plan_request(_request(command="restoreindex", collection="c1", directory="/b",
                                        restore_from="c0", parallel=True),
                               mock_manager, two_node_state)

        assert len(backup) == 2
        assert {a.keep for a in backup} == {4}
        assert len(restore) == 4
        assert not any(a.wait for a in restore)

    def test_reads_state_when_not_given(self, mock_manager, two_node_state):
        from cloudmanager.runner import plan_request

        mock_manager.current_state.return_value = two_node_state

        assert len(plan_request(_request(command="cleancollection", collection="c1"), mock_manager)) == 0
        mock_manager.current_state.assert_called_once()

    def test_read_only_command_has_no_plan(self, mock_manager, two_node_state):
        from cloudmanager.errors import PlanningError
        from cloudmanager.runner import plan_request

        with pytest.raises(PlanningError):
            plan_request(_request(command="clusterstatus"), mock_manager, two_node_state)


class TestRun:
    """Tests for running a request end to end."""

    def test_executes_confirmed_operation(self, mock_manager, manager_config, two_node_state):
        from cloudmanager.runner import EXIT_SUCCESS, run

        mock_manager.current_state.return_value = two_node_state
        confirm = MagicMock(return_value=True)
        factory = _factory(mock_manager)

        status = run(_request(command="deletealias", alias="live"), manager_config,
                     confirm=confirm, manager_factory=factory)

        assert status == EXIT_SUCCESS
        confirm.assert_called_once()
        mock_manager.admin.collections.assert_called_once_with(NODE1, "DELETEALIAS", name="live")
        factory.return_value.__exit__.assert_called_once()

    def test_declined(self, mock_manager, manager_config, two_node_state):
        from cloudmanager.runner import EXIT_FAILURE, run

        mock_manager.current_state.return_value = two_node_state

        status = run(_request(command="deletealias", alias="live"), manager_config,
                     confirm=lambda op: False, manager_factory=_factory(mock_manager))

        assert status == EXIT_FAILURE
        mock_manager.admin.collections.assert_not_called()

    def test_empty_operation_skips_confirmation(self, mock_manager, manager_config, two_node_state):
        from cloudmanager.runner import EXIT_SUCCESS, run

        mock_manager.current_state.return_value = two_node_state
        confirm = MagicMock()

        status = run(_request(command="cleancollection", collection="c1"), manager_config,
                     confirm=confirm, manager_factory=_factory(mock_manager))

        assert status == EXIT_SUCCESS
        confirm.assert_not_called()

    def test_failed_action(self, mock_manager, manager_config, two_node_state):
        """A safety violation at execution time fails the run."""
        from cloudmanager.runner import EXIT_FAILURE, run

        mock_manager.current_state.return_value = two_node_state
        factory = _factory(mock_manager)

        status = run(
            _request(command="deletereplica", collection="c1", slice="s1", node=NODE2, safety_factor=2),
            manager_config,
            manager_factory=factory,
        )

        assert status == EXIT_FAILURE
        factory.return_value.__exit__.assert_called_once()

    def test_planning_error(self, mock_manager, manager_config, two_node_state, caplog):
        from cloudmanager.runner import EXIT_FAILURE, run

        factory = _factory(mock_manager)
        mock_manager.current_state.return_value = two_node_state

        status = run(_request(command="copy", collection="c9", copy_from="old:8983"), manager_config,
                     manager_factory=factory)

        assert status == EXIT_FAILURE
        assert "non-existent target collection c9" in caplog.text
        factory.return_value.__exit__.assert_called_once()

    def test_connection_lost_during_execution(self, mock_manager, manager_config, two_node_state, caplog):
        """An error escaping an action still releases the manager."""
        from cloudmanager.errors import ConnectivityError
        from cloudmanager.runner import EXIT_FAILURE, run

        mock_manager.current_state.return_value = two_node_state
        mock_manager.admin.collections.side_effect = ConnectivityError("Could not reach 10.0.0.1:8983")
        factory = _factory(mock_manager)

        status = run(_request(command="deletealias", alias="live"), manager_config,
                     manager_factory=factory)

        assert status == EXIT_FAILURE
        assert "Could not reach 10.0.0.1:8983" in caplog.text
        factory.return_value.__exit__.assert_called_once()

    def test_connection_failure(self, manager_config):
        from cloudmanager.errors import ConnectivityError
        from cloudmanager.runner import EXIT_FAILURE, run

        factory = MagicMock(side_effect=ConnectivityError("ZooKeeper at zk1:2181 is unavailable"))

        assert run(_request(command="clusterstatus"), manager_config, manager_factory=factory) == EXIT_FAILURE

    def test_cluster_status_reports(self, mock_manager, manager_config, two_node_state):
        from cloudmanager.runner import EXIT_SUCCESS, run

        mock_manager.current_state.return_value = two_node_state
        report = MagicMock()

        status = run(_request(command="clusterstatus"), manager_config,
                     report=report, manager_factory=_factory(mock_manager))

        assert status == EXIT_SUCCESS
        report.assert_called_once_with(mock_manager, two_node_state)

    def test_wait_active(self, mock_manager, manager_config):
        from cloudmanager.runner import EXIT_FAILURE, run

        with patch("cloudmanager.runner.wait_for_active", return_value=False) as wait:
            status = run(_request(command="waitactive", nodes="h1", timeout=30), manager_config,
                         manager_factory=_factory(mock_manager))

        assert status == EXIT_FAILURE
        wait.assert_called_once_with(mock_manager, ["h1"], timeout=30.0, strict=False)


class TestMetricsExport:
    """Tests for writing counters when a run ends."""

    def test_writes_textfile(self, mock_manager, manager_config, two_node_state, tmp_path):
        from cloudmanager.runner import run

        path = tmp_path / "cloudmanager.prom"
        manager_config.metrics_file = str(path)
        mock_manager.current_state.return_value = two_node_state

        run(_request(command="deletealias", alias="live"), manager_config,
            manager_factory=_factory(mock_manager))

        text = path.read_text()
        assert 'cloudmanager_actions_total{kind="DeleteAlias",outcome="success"}' in text
        assert 'cloudmanager_operations_total{outcome="success"}' in text

    def test_written_after_failed_run(self, manager_config, tmp_path):
        from cloudmanager.errors import ConnectivityError
        from cloudmanager.runner import EXIT_FAILURE, run

        path = tmp_path / "cloudmanager.prom"
        manager_config.metrics_file = str(path)
        factory = MagicMock(side_effect=ConnectivityError("ZooKeeper at zk1:2181 is unavailable"))

        assert run(_request(command="clusterstatus"), manager_config, manager_factory=factory) == EXIT_FAILURE
        assert "cloudmanager_operations_total" in path.read_text()

    def test_unwritable_path_keeps_status(self, mock_manager, manager_config, two_node_state, tmp_path, caplog):
        from cloudmanager.runner import EXIT_SUCCESS, run

        manager_config.metrics_file = str(tmp_path / "missing" / "cloudmanager.prom")
        mock_manager.current_state.return_value = two_node_state

        status = run(_request(command="clusterstatus"), manager_config,
                     manager_factory=_factory(mock_manager))

        assert status == EXIT_SUCCESS
        assert "Could not write metrics" in caplog.text

    def test_disabled_by_default(self, mock_manager, manager_config, two_node_state):
        from cloudmanager.runner import run

        mock_manager.current_state.return_value = two_node_state

        with patch("cloudmanager.runner.write_to_textfile") as write:
            run(_request(command="clusterstatus"), manager_config,
                manager_factory=_factory(mock_manager))

        write.assert_not_called()


class TestFailureMessage:
    """Tests for failure_message."""

    def test_manager_error_shown_directly(self):
        from cloudmanager.errors import PlanningError
        from cloudmanager.runner import failure_message

        assert failure_message(PlanningError("no room")) == "no room"

    def test_unexpected_error_root_cause(self):
        from cloudmanager.runner import failure_message

        try:
            try:
                raise OSError("disk gone")
            except OSError as e:
                raise RuntimeError("wrapper") from e
        except RuntimeError as wrapped:
            assert failure_message(wrapped) == "disk gone"
