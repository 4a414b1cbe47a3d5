import pytest

from chaospartition.actions.partition import (drop_traffic, reset_partitions,
                                              split_hosts)
from chaospartition.common import CommandError, HostConnectionError
from chaospartition.execute.execute import ExecResult
from chaospartition.orchestrator import Orchestrator, Report
from chaospartition.probes.partition import list_partition_rules
from test import patch


def fake_apply(outcomes=None, seen=None):
    outcomes = outcomes or {}

    def apply(orchestrator, commands, connection_errors_fatal=False):
        if seen is not None:
            seen.extend(commands)
        rtn = {}
        for command in commands:
            rtn.setdefault(command.host, []).extend(
                outcomes.get(command.host) or
                [ExecResult(command.host, 'cmd', 0, 'Chain {}\n'.format(
                    command.host), '')])
        return Report(rtn, connection_errors_fatal)
    return apply


def test_drop_traffic():
    seen = []
    with patch(Orchestrator, 'apply', fake_apply(seen=seen)):
        assert drop_traffic('Node1', 'Node2', mode='DROP', two_way=True)
    assert [c.host for c in seen] == ['Node1', 'Node2']


def test_drop_traffic_invalid_request():
    with patch(Orchestrator, 'apply', fake_apply()):
        assert not drop_traffic('Node1', 'Node2', mode='SMASH')
        assert not drop_traffic('Node1', 'Node1')


def test_drop_traffic_unreachable_host_fails():
    outcomes = {'Node2': [HostConnectionError('Node2', 'refused')]}
    with patch(Orchestrator, 'apply', fake_apply(outcomes)):
        assert not drop_traffic('Node1', 'Node2')


def test_split_hosts_accepts_strings_and_lists():
    seen = []
    with patch(Orchestrator, 'apply', fake_apply(seen=seen)):
        assert split_hosts('Node1,Node2', ['Node3'], mode='tcp_reset')
    assert sorted({c.host for c in seen}) == ['Node1', 'Node2', 'Node3']
    assert len(seen) == 4


def test_split_hosts_overlap_fails():
    with patch(Orchestrator, 'apply', fake_apply()):
        assert not split_hosts(['Node1'], ['Node1'])


def test_split_hosts_skips_unreachable_host():
    outcomes = {'Node3': [HostConnectionError('Node3', 'refused')]}
    with patch(Orchestrator, 'apply', fake_apply(outcomes)):
        assert split_hosts(['Node1', 'Node2'], ['Node3'])


def test_reset_partitions_command_failure():
    outcomes = {'Node1': [ExecResult('Node1', 'cmd', 1, '', 'denied')]}
    with patch(Orchestrator, 'apply', fake_apply(outcomes)):
        assert not reset_partitions('Node1 Node2')
    with patch(Orchestrator, 'apply', fake_apply()):
        assert not reset_partitions([])


def test_list_partition_rules():
    outcomes = {'Node2': [HostConnectionError('Node2', 'refused')]}
    with patch(Orchestrator, 'apply', fake_apply(outcomes)):
        rules = list_partition_rules(['Node1', 'Node2'])
    assert rules == {'Node1': 'Chain Node1\n'}


def test_list_partition_rules_command_failure():
    outcomes = {'Node1': [ExecResult('Node1', 'cmd', 1, '', 'denied')]}
    with patch(Orchestrator, 'apply', fake_apply(outcomes)):
        with pytest.raises(CommandError):
            list_partition_rules('Node1')


def test_drop_traffic_accepts_string_flags():
    seen = []
    with patch(Orchestrator, 'apply', fake_apply(seen=seen)):
        assert drop_traffic('Node1', 'Node2', two_way='yes')
        assert not drop_traffic('Node1', 'Node2', two_way='maybe')
    assert len(seen) == 2
    # two-way: each host only blocks its own outbound direction
    assert '-s Node1 -d Node2' in seen[0].script
    assert '-s Node2 -d Node1' not in seen[0].script
