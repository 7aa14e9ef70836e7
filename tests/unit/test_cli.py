"""
Unit tests for the command line entry point (snapshot_agent/cli.py).
"""

import signal
from unittest.mock import MagicMock, patch

import pytest

from snapshot_agent import cli
from snapshot_agent import scheduler as scheduler_module
from snapshot_agent.backup.executor import CycleResult
from snapshot_agent.backup.storage import WriteResult
from snapshot_agent.vault import LeadershipQueryError


@pytest.fixture(autouse=True)
def no_logging_setup():
    with patch('snapshot_agent.cli.configure_logging'):
        yield


@pytest.fixture
def agent():
    with patch('snapshot_agent.cli.create_agent') as mock_create:
        mock_agent = MagicMock()
        mock_agent.run_cycle.return_value = CycleResult(results=[
            WriteResult('local', '/snapshots/raft_snapshot-1.snap', True)
        ])
        mock_create.return_value = mock_agent
        yield mock_agent


class TestStartup:
    """Test configuration errors at startup."""

    def test_missing_config_path(self, agent):
        assert cli.main([]) == 1
        agent.run_cycle.assert_not_called()

    def test_unreadable_config(self, tmp_path, agent):
        assert cli.main(['--config', str(tmp_path / 'missing.json'), '--once']) == 1
        agent.run_cycle.assert_not_called()

    def test_invalid_config(self, tmp_path, agent):
        path = tmp_path / 'config.json'
        path.write_text('{"vault_auth_method": "ldap", "local_storage": {"path": "/tmp"}}')

        assert cli.main(['--config', str(path), '--once']) == 1


class TestRunOnce:
    """Test --once mode."""

    def test_success(self, config_file, agent):
        assert cli.main(['--config', config_file, '--once']) == 0
        agent.run_cycle.assert_called_once()

    def test_destination_failure(self, config_file, agent):
        agent.run_cycle.return_value = CycleResult(results=[
            WriteResult('local', '/snapshots/raft_snapshot-1.snap', True),
            WriteResult('aws', 's3://bucket/raft_snapshot-1.snap', False, error='timeout'),
        ])

        assert cli.main(['--config', config_file, '--once']) == 1

    def test_fatal_error(self, config_file, agent):
        agent.run_cycle.side_effect = LeadershipQueryError('sealed')

        assert cli.main(['--config', config_file, '--once']) == 1

    def test_not_leader_is_success(self, config_file, agent):
        agent.run_cycle.return_value = CycleResult(skipped=True)

        assert cli.main(['--config', config_file, '--once']) == 0


class TestScheduledMode:
    """Test the long-running mode."""

    @pytest.fixture(autouse=True)
    def mock_signal(self):
        with patch('snapshot_agent.cli.signal.signal') as mock_signal:
            yield mock_signal

    @pytest.fixture(autouse=True)
    def scheduler_calls(self):
        with patch.object(scheduler_module, 'init_scheduler') as mock_init, \
                patch.object(scheduler_module, 'start_scheduler') as mock_start, \
                patch.object(scheduler_module, 'stop_scheduler') as mock_stop:
            scheduler_module.fatal_error = None
            yield mock_init, mock_start, mock_stop
            scheduler_module.fatal_error = None

    def test_sigterm_stops_scheduler(self, config_file, agent, scheduler_calls, mock_signal):
        """Test the registered SIGTERM handler shuts the scheduler down."""
        _, mock_start, mock_stop = scheduler_calls

        def deliver_sigterm():
            signum, handler = mock_signal.call_args[0]
            assert signum == signal.SIGTERM
            handler(signum, None)

        mock_start.side_effect = deliver_sigterm

        assert cli.main(['--config', config_file]) == 0
        mock_stop.assert_called_once_with()

    def test_runs_scheduler(self, config_file, agent, scheduler_calls):
        mock_init, mock_start, _ = scheduler_calls

        assert cli.main(['--config', config_file]) == 0

        assert mock_init.call_args[0][0] is agent
        mock_start.assert_called_once()

    def test_fatal_error_exit_code(self, config_file, agent, scheduler_calls):
        _, mock_start, _ = scheduler_calls

        def fail_cycle():
            scheduler_module.fatal_error = LeadershipQueryError('sealed')

        mock_start.side_effect = fail_cycle

        assert cli.main(['--config', config_file]) == 1

    def test_keyboard_interrupt(self, config_file, agent, scheduler_calls):
        _, mock_start, mock_stop = scheduler_calls
        mock_start.side_effect = KeyboardInterrupt

        assert cli.main(['--config', config_file]) == 0
        mock_stop.assert_called_once()
