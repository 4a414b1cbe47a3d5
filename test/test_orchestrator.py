import threading

import pytest

from chaospartition.common import (CommandError, HostConnectionError,
                                   TransportError)
from chaospartition.execute.execute import ExecResult, RemoteExecutor
from chaospartition.orchestrator import *
from chaospartition.rules import PartitionGroup, plan_list, plan_split


class FakeExecutor(RemoteExecutor):
    """Answers per host from a table; unknown hosts succeed with no output."""

    def __init__(self, behaviour=None):
        self.behaviour = behaviour or {}
        self.calls = []
        self.lock = threading.Lock()

    def _execute_on_host(self, host, commands):
        with self.lock:
            self.calls.append((host, [c.action for c in commands]))
        outcome = self.behaviour.get(host)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            return [ExecResult(host, c.command_line(), 0, '', '')
                    for c in commands]
        return outcome


def test_group_by_host_keeps_order():
    commands = plan_split(PartitionGroup(['A', 'B'], ['C']))
    grouped = group_by_host(commands)
    assert list(grouped) == ['A', 'C', 'B']
    assert len(grouped['C']) == 2


def test_one_session_per_host():
    executor = FakeExecutor()
    report = Orchestrator(executor=executor).apply(
        plan_split(PartitionGroup(['A', 'B'], ['C'])))
    assert sorted(host for host, _ in executor.calls) == ['A', 'B', 'C']
    assert len(report['C']) == 2
    assert report.ok
    assert not report.fatal
    assert report.exit_code == 0


def test_connection_failure_does_not_stop_other_hosts():
    executor = FakeExecutor({'h2': HostConnectionError('h2', 'refused')})
    report = Orchestrator(executor=executor, workers=2).apply(
        plan_list(['h1', 'h2', 'h3']))
    assert list(report) == ['h1', 'h2', 'h3']
    assert sorted(host for host, _ in executor.calls) == ['h1', 'h2', 'h3']
    assert isinstance(report['h2'][0], HostConnectionError)
    assert report['h1'][0].return_code == 0
    assert report['h3'][0].return_code == 0
    assert not report.ok
    assert not report.fatal
    assert report.exit_code == 0


def test_connection_failure_can_be_fatal():
    executor = FakeExecutor({'h2': HostConnectionError('h2', 'refused')})
    report = Orchestrator(executor=executor).apply(
        plan_list(['h1', 'h2']), connection_errors_fatal=True)
    assert report.fatal
    assert report.exit_code == 1
    assert len(report.connection_errors) == 1


def test_unreadable_identity_file_is_reported_per_host():
    executor = FakeExecutor({'h1': OSError("Unable to access the file")})
    report = Orchestrator(executor=executor).apply(plan_list(['h1', 'h2']))
    assert isinstance(report['h1'][0], HostConnectionError)
    assert report['h2'][0].return_code == 0


def test_command_error_is_fatal_with_its_exit_status():
    executor = FakeExecutor({'h1': [ExecResult('h1', 'cmd', 4, '',
                                               'iptables: Permission denied\n')]})
    report = Orchestrator(executor=executor).apply(plan_list(['h1', 'h2']))
    assert report.fatal
    assert report.exit_code == 4
    error = report.command_errors[0]
    assert isinstance(error, CommandError)
    assert error.host == 'h1'
    assert 'Permission denied' in error.stderr
    assert report['h2'][0].return_code == 0


def test_transport_error_counts_as_connection_error():
    error = TransportError('h1', 'reset by peer')
    executor = FakeExecutor({'h1': [ExecResult('h1', 'cmd', None, '', '',
                                               error)]})
    report = Orchestrator(executor=executor).apply(plan_list(['h1']))
    assert report.connection_errors == [error]
    assert not report.command_errors
    assert not report.fatal


def test_outputs_are_rendered():
    executor = FakeExecutor({'h1': [ExecResult('h1', 'cmd', 0, '{"a":1}', '')],
                             'h2': [ExecResult('h2', 'cmd', 0, 'not json', '')]})
    report = Orchestrator(executor=executor).apply(plan_list(['h1', 'h2']))
    assert report.outputs() == {'h1': ['{\n  "a": 1\n}'],
                                'h2': ['not json']}


def test_format_report_indents_per_host():
    executor = FakeExecutor({
        'h1': [ExecResult('h1', 'cmd', 0, '{"a":1}', '')],
        'h2': HostConnectionError('h2', 'No route to host'),
        'h3': [ExecResult('h3', 'cmd', 1, '', 'bad rule\n')],
    })
    report = Orchestrator(executor=executor).apply(
        plan_list(['h1', 'h2', 'h3']))
    assert format_report(report) == "\n".join([
        "h1:",
        "  ok",
        "    {",
        "      \"a\": 1",
        "    }",
        "h2:",
        "  cannot run on host h2",
        "    h2: No route to host",
        "h3:",
        "  failed with exit status 1",
        "    bad rule",
    ]) + "\n"


def test_empty_plan():
    report = Orchestrator(executor=FakeExecutor()).apply([])
    assert len(report) == 0
    assert format_report(report) == ""


def test_workers_must_be_positive():
    with pytest.raises(ValueError):
        Orchestrator(executor=FakeExecutor(), workers=0)
