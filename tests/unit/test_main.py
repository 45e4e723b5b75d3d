import logging
import threading
from unittest import mock

import pytest
from kubernetes import client
from pythonjsonlogger.json import JsonFormatter

from ipassign import main
from ipassign.src.exceptions import AssignmentError, RollbackError


@pytest.fixture
def nodes():
    return mock.Mock()


@pytest.fixture
def new_assigner(monkeypatch):
    factory = mock.Mock()
    monkeypatch.setattr(main, "new_assigner", factory)
    return factory


@pytest.fixture
def ipassign(aws_env, monkeypatch, nodes, new_assigner):
    monkeypatch.setattr(main.IPAssign, "_init_logs", lambda self: None)
    monkeypatch.setattr(main, "KubernetesNodeClient", mock.Mock(return_value=nodes))
    monkeypatch.setattr(main, "WATCH_BACKOFF_SECONDS", 0)
    ipassign = main.IPAssign(threading.Event())
    ipassign.reconciler = mock.Mock()
    return ipassign


def node_event(event_type, name, resource_version=None):
    return event_type, client.V1Node(
        metadata=client.V1ObjectMeta(name=name, resource_version=resource_version)
    )


def test_init_builds_assigner_from_config(ipassign, new_assigner):
    new_assigner.assert_called_once_with(ipassign.config)
    assert ipassign.config.provider == "aws"


def test_init_logs_installs_json_formatter(aws_env, monkeypatch, nodes, new_assigner):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setattr(main, "KubernetesNodeClient", mock.Mock(return_value=nodes))
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    try:
        main.IPAssign()
        added = [h for h in root.handlers if h not in handlers]
        assert len(added) == 1
        assert isinstance(added[0].formatter, JsonFormatter)
        assert root.level == logging.DEBUG
    finally:
        root.handlers = handlers
        root.setLevel(level)


def test_watch_reconciles_initially_and_per_event(ipassign, nodes):
    streams = [
        iter([node_event("ADDED", "n1", "1"), node_event("MODIFIED", "n1", "2")]),
        iter([]),
    ]

    def watch_nodes(label_selector, timeout_seconds, resource_version):
        stream = streams.pop(0)
        if not streams:
            ipassign.stop_event.set()
        return stream

    nodes.watch_nodes.side_effect = watch_nodes

    ipassign.watch()

    assert nodes.watch_nodes.mock_calls == [
        mock.call("voice=proxy", main.WATCH_TIMEOUT_SECONDS, None),
        mock.call("voice=proxy", main.WATCH_TIMEOUT_SECONDS, "2"),
    ]
    assert ipassign.reconciler.reconcile.mock_calls == [mock.call(ipassign.stop_event)] * 3


def test_watch_window_fits_termination_grace_period():
    assert main.WATCH_TIMEOUT_SECONDS < 30


def test_stop_while_stream_is_quiet_ends_run(ipassign, nodes):
    def quiet_stream():
        # Signal arrives while the read is blocked; the window then closes empty.
        ipassign.stop_event.set()
        return
        yield

    nodes.watch_nodes.side_effect = lambda *args: quiet_stream()

    ipassign.run()

    assert nodes.watch_nodes.call_count == 1
    assert ipassign.reconciler.reconcile.call_count == 1


def test_watch_stops_when_stop_event_set(ipassign, nodes):
    def events():
        ipassign.stop_event.set()
        yield node_event("MODIFIED", "n1")
        yield node_event("MODIFIED", "n2")

    nodes.watch_nodes.return_value = events()

    ipassign.watch()

    assert ipassign.reconciler.reconcile.call_count == 1


@pytest.mark.parametrize("error", (AssignmentError("boom"), RuntimeError("api down")))
def test_reconcile_errors_are_logged_not_raised(ipassign, caplog, error):
    ipassign.reconciler.reconcile.side_effect = error

    with caplog.at_level(logging.ERROR):
        ipassign.reconcile()

    assert "Failed to reconcile nodes with IPs" in caplog.text


def test_rollback_errors_are_critical(ipassign, caplog):
    ipassign.reconciler.reconcile.side_effect = RollbackError(RuntimeError("attach"), RuntimeError("rollback"))

    with caplog.at_level(logging.ERROR):
        ipassign.reconcile()

    assert [r.levelno for r in caplog.records] == [logging.CRITICAL]


def test_run_restarts_watch_after_failure(ipassign, nodes):
    calls = []

    def watch_nodes(label_selector, timeout_seconds, resource_version):
        calls.append(label_selector)
        if len(calls) == 1:
            raise RuntimeError("connection reset")
        ipassign.stop_event.set()
        return iter([])

    nodes.watch_nodes.side_effect = watch_nodes

    ipassign.run()

    assert len(calls) == 2
    assert ipassign.reconciler.reconcile.call_count == 2


def test_run_reconnects_when_stream_ends(ipassign, nodes):
    streams = [iter([]), iter([node_event("MODIFIED", "n1")])]

    def watch_nodes(label_selector, timeout_seconds, resource_version):
        stream = streams.pop(0)
        if not streams:
            ipassign.stop_event.set()
        return stream

    nodes.watch_nodes.side_effect = watch_nodes

    ipassign.run()

    assert nodes.watch_nodes.call_count == 2


def test_main_exits_on_configuration_error(clean_env, monkeypatch):
    monkeypatch.setattr(main.IPAssign, "_init_logs", lambda self: None)
    monkeypatch.setattr(main.signal, "signal", mock.Mock())

    with pytest.raises(SystemExit) as exc_info:
        main.main()

    assert exc_info.value.code == 1
