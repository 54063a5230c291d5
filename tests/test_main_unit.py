#!/usr/bin/env python3
"""
Unit tests for the command line interface.

Runs the CLI against a temporary data directory. Operations that need the
network are exercised with the session's transport replaced.
"""

import json
import logging
from unittest.mock import AsyncMock, patch

import pytest

from sqclient import main as cli
from sqclient.auth.session_storage import SessionStore
from sqshared.exceptions import TransportError
from sqshared.models import SessionSnapshot

from conftest import make_token, make_user


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch.object(cli, 'setup_logging') as setup:
        yield setup


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ('SQ_CLIENT_ID', 'SQ_DATA_DIR', 'SQ_DATA_FILE', 'SQ_TEST_MODE', 'SQ_ENCRYPT_DATA', 'SQ_AUDIT_FILE'):
        monkeypatch.delenv(name, raising=False)


def run(tmp_path, *arguments):
    return cli.main([
        '--config', str(tmp_path / 'missing.conf'),
        '--client-id', 'client',
        '--data-dir', str(tmp_path),
        *arguments,
    ])


class TestArguments:
    """Test argument parsing."""

    def test_operation_is_required(self):
        with pytest.raises(SystemExit):
            cli.parse_arguments([])

    def test_operations_are_exclusive(self):
        with pytest.raises(SystemExit):
            cli.parse_arguments(['--status', '--logout'])

    def test_scope_requires_login(self):
        with pytest.raises(SystemExit):
            cli.parse_arguments(['--status', '--scope', 'user.basic_profile.read'])

    def test_overrides_reach_configuration(self, tmp_path):
        args = cli.parse_arguments([
            '--status', '--config', str(tmp_path / 'missing.conf'),
            '--client-id', 'cli-client', '--production', '--encrypt',
        ])

        config = cli.build_configuration(args)

        assert config.get_client_id() == "cli-client"
        assert config.is_test_mode() is False
        assert config.is_encryption_enabled() is True


class TestCommands:
    """Test CLI commands."""

    def test_status_of_empty_session(self, tmp_path, capsys):
        assert run(tmp_path, '--status', '--json') == cli.EXIT_SUCCESS

        status = json.loads(capsys.readouterr().out)
        assert status['logged_in'] is False
        assert status['user'] is None
        assert status['login_state'] == 'no_request'

    def test_status_of_stored_session(self, tmp_path, capsys):
        SessionStore(tmp_path / 'sqappapi.json').save(SessionSnapshot(user=make_user(), token=make_token()))

        assert run(tmp_path, '--status') == cli.EXIT_SUCCESS

        out = capsys.readouterr().out
        assert "Logged in: Yes" in out
        assert "player-one (42)" in out

    def test_logout(self, tmp_path, capsys):
        SessionStore(tmp_path / 'sqappapi.json').save(SessionSnapshot(user=make_user(), token=make_token()))

        assert run(tmp_path, '--logout') == cli.EXIT_SUCCESS

        assert "Logged out" in capsys.readouterr().out
        assert SessionStore(tmp_path / 'sqappapi.json').load().is_empty

    def test_missing_client_id_is_configuration_error(self, tmp_path, capsys):
        code = cli.main(['--config', str(tmp_path / 'missing.conf'), '--data-dir', str(tmp_path), '--status'])

        assert code == cli.EXIT_CONFIG_ERROR
        assert "Client id must be provided" in capsys.readouterr().err

    def test_refresh_without_login_is_auth_failure(self, tmp_path):
        assert run(tmp_path, '--refresh') == cli.EXIT_AUTH_FAILED

    def test_network_failure(self, tmp_path):
        SessionStore(tmp_path / 'sqappapi.json').save(SessionSnapshot(user=make_user(), token=make_token()))
        failing = AsyncMock(side_effect=TransportError("connection refused"))

        with patch('sqclient.session.SideQuestSession.refresh_user_profile', failing):
            assert run(tmp_path, '--refresh') == cli.EXIT_NETWORK_ERROR

    def test_failure_is_logged_with_error_details(self, tmp_path, caplog):
        SessionStore(tmp_path / 'sqappapi.json').save(SessionSnapshot(user=make_user(), token=make_token()))
        failing = AsyncMock(side_effect=TransportError("connection refused"))
        caplog.set_level(logging.ERROR)

        with patch('sqclient.session.SideQuestSession.refresh_user_profile', failing):
            run(tmp_path, '--refresh', '--quiet')

        record = [r for r in caplog.records if r.name == 'sqclient.main'][-1]
        assert isinstance(record.error_info, TransportError)

    def test_audit_file_reaches_logging(self, tmp_path, quiet_logging):
        audit_file = str(tmp_path / 'audit.log')

        assert run(tmp_path, '--status', '--audit-file', audit_file) == cli.EXIT_SUCCESS

        assert quiet_logging.call_args.kwargs['audit_file'] == audit_file
