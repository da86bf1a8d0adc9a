"""
Unit tests for the changes-feed command line tool.
"""

import io
import json
import logging

import json_log_formatter
import pytest

from changes_sdk import cli
from changes_sdk.client import ChangesClient
from changes_sdk.config import ClientSettings
from changes_sdk.memory import ScriptedTransport


@pytest.fixture
def client_and_transport():
    transport = ScriptedTransport()
    client = ChangesClient(settings=ClientSettings(url="http://couch.test:5984"), transport=transport)
    return client, transport


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


class TestParser:
    """Tests for argument parsing."""

    def test_drain_options(self):
        args = cli.build_parser().parse_args(
            ["--url", "http://h:5984", "drain", "orders", "--since", "0", "--batch-size", "5", "--include-docs"]
        )
        assert args.command == "drain"
        assert args.db == "orders"
        assert args.url == "http://h:5984"
        assert cli.reader_options(args) == {"since": "0", "batch_size": 5, "include_docs": True}

    def test_omitted_options_fall_back_to_defaults(self):
        args = cli.build_parser().parse_args(["tail", "orders"])
        assert cli.reader_options(args) == {}

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestRunFeed:
    """Tests for run_feed."""

    @pytest.mark.asyncio
    async def test_drain_prints_changes(self, client_and_transport):
        client, transport = client_and_transport
        transport.reply(
            results=[{"id": "a", "changes": [{"rev": "1-x"}]}, {"id": "b", "changes": [{"rev": "1-y"}]}],
            last_seq="2-0",
        )
        out = io.StringIO()

        code = await cli.run_feed(client, "drain", "orders", {"since": "0"}, out=out, install_signals=False)

        assert code == 0
        lines = [json.loads(line) for line in out.getvalue().splitlines()]
        assert [line["id"] for line in lines] == ["a", "b"]
        assert transport.since_values() == ["0"]

    @pytest.mark.asyncio
    async def test_tail_stops_at_max_changes(self, client_and_transport):
        client, transport = client_and_transport
        transport.reply(results=[{"id": "a", "changes": []}, {"id": "b", "changes": []}], last_seq="2-0")
        transport.reply(results=[{"id": "c", "changes": []}], last_seq="3-0")
        out = io.StringIO()

        code = await cli.run_feed(client, "tail", "orders", {"max_changes": 3}, out=out, install_signals=False)

        assert code == 0
        assert len(out.getvalue().splitlines()) == 3
        assert transport.limit_values() == [3, 1]

    @pytest.mark.asyncio
    async def test_fatal_error_exit_code(self, client_and_transport, capsys):
        client, transport = client_and_transport
        transport.fail_status(401, "Name or password is incorrect.")

        code = await cli.run_feed(client, "tail", "orders", {}, out=io.StringIO(), install_signals=False)

        assert code == 1
        assert "Name or password is incorrect." in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_transient_errors_do_not_fail(self, client_and_transport):
        client, transport = client_and_transport
        transport.fail_status(503)
        transport.reply(results=[], last_seq="1-0")

        code = await cli.run_feed(client, "drain", "orders", {}, out=io.StringIO(), install_signals=False)

        assert code == 0
        assert transport.request_count == 2


class TestMain:
    """Tests for main()."""

    def test_invalid_option_exits_with_2(self, monkeypatch, capsys):
        monkeypatch.setattr(cli, "setup_logging", lambda *args: None)

        code = cli.main(["drain", "orders", "--batch-size", "0"])

        assert code == 2
        assert "batch_size" in capsys.readouterr().err

    def test_invalid_environment_exits_with_2(self, monkeypatch):
        monkeypatch.setattr(cli, "setup_logging", lambda *args: None)
        monkeypatch.setenv("CHANGES_BATCH_SIZE", "many")

        assert cli.main(["tail", "orders"]) == 2


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_format(self, restore_root_logger):
        cli.setup_logging("DEBUG", "json")

        assert restore_root_logger.level == logging.DEBUG
        assert isinstance(restore_root_logger.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_text_format(self, restore_root_logger):
        cli.setup_logging("warning", "text")

        assert restore_root_logger.level == logging.WARNING
        assert not isinstance(restore_root_logger.handlers[0].formatter, json_log_formatter.JSONFormatter)
