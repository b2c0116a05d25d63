"""Tests for process tree management."""
import signal
from unittest.mock import Mock, patch

import psutil

import startall.proc as proc_module


def make_proc(pid, running=True):
    proc = Mock(spec=psutil.Process)
    proc.pid = pid
    proc.is_running.return_value = running
    return proc


def test_get_process_tree():
    """Test the root comes first, followed by its descendants."""
    root = make_proc(1000)
    root.children.return_value = [make_proc(1001), make_proc(1002)]

    with patch("psutil.Process", return_value=root) as process_cls:
        tree = proc_module.get_process_tree(1000)

    process_cls.assert_called_once_with(1000)
    root.children.assert_called_once_with(recursive=True)
    assert [p.pid for p in tree] == [1000, 1001, 1002]


def test_get_process_tree_already_dead():
    """Test a vanished root gives an empty tree."""
    with patch("psutil.Process", side_effect=psutil.NoSuchProcess(1234)):
        assert proc_module.get_process_tree(1234) == []


def test_get_process_tree_no_permission():
    with patch("psutil.Process", side_effect=psutil.AccessDenied(1234)):
        assert proc_module.get_process_tree(1234) == []


def test_signal_tree_skips_dead_and_denied():
    """Test signalling continues past processes that refuse or vanished."""
    alive = make_proc(1)
    gone = make_proc(2)
    gone.send_signal.side_effect = psutil.NoSuchProcess(2)
    denied = make_proc(3)
    denied.send_signal.side_effect = psutil.AccessDenied(3)

    delivered = proc_module.signal_tree([alive, gone, denied], signal.SIGTERM)

    assert delivered == [alive]
    for proc in (alive, gone, denied):
        proc.send_signal.assert_called_once_with(signal.SIGTERM)


def test_terminate_tree_graceful_shutdown():
    """Test SIGTERM goes to the whole tree and the snapshot is returned."""
    procs = [make_proc(1234), make_proc(5678)]

    with patch.object(proc_module, "get_process_tree", return_value=procs):
        result = proc_module.terminate_tree(1234)

    assert result == procs
    for proc in procs:
        proc.send_signal.assert_called_once_with(signal.SIGTERM)
        proc.kill.assert_not_called()


def test_terminate_tree_already_dead():
    with patch.object(proc_module, "get_process_tree", return_value=[]):
        assert proc_module.terminate_tree(1234) == []


def test_kill_survivors_only_kills_running():
    """Test escalation skips processes that exited during the grace period."""
    survivor = make_proc(1)
    exited = make_proc(2, running=False)
    vanished = make_proc(3)
    vanished.kill.side_effect = psutil.NoSuchProcess(3)

    failed = proc_module.kill_survivors([survivor, exited, vanished])

    assert failed == []
    survivor.kill.assert_called_once()
    exited.kill.assert_not_called()


def test_kill_survivors_reports_failures():
    stubborn = make_proc(42)
    stubborn.kill.side_effect = psutil.AccessDenied(42)

    assert proc_module.kill_survivors([stubborn]) == [42]


def test_kill_tree():
    procs = [make_proc(1234), make_proc(5678)]

    with patch.object(proc_module, "get_process_tree", return_value=procs):
        assert proc_module.kill_tree(1234) == []

    for proc in procs:
        proc.kill.assert_called_once()
