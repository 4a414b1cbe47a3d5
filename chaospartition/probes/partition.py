from chaospartition.actions.partition import _hosts, _orchestrator
from chaospartition.common import (Direction, PartitionMode,
                                   PartitionOptions,
                                   DEFAULT_PARTITION_CHAIN,
                                   DEFAULT_PARTITION_SSH_CONFIG_FILE)
from chaospartition.orchestrator import format_report
from chaospartition.rules import plan_list
from logzero import logger
from typing import Callable, Dict, List, Union


def list_partition_rules(hosts: Union[str, List[str]],
    chain: str = DEFAULT_PARTITION_CHAIN,
    ssh_config_file: str = DEFAULT_PARTITION_SSH_CONFIG_FILE,
    user: str = None, identity_file: str = None,
    secret_provider: Callable[[str], str] = None) -> Dict[str, str]:
    """
    Get the partition rules currently installed on each host.

    Hosts that can not be reached are left out of the result.

    :param hosts: A list of hosts or a comma separated string. Required.
    :type hosts: Union[str, List[str]]
    :param chain: The iptables chain that holds partition rules.
        Optional. (Default: chaospartition.common.DEFAULT_PARTITION_CHAIN)
    :type chain: str
    :return: Dict[str, str]
    """
    options = PartitionOptions(mode=PartitionMode.REJECT,
                               direction=Direction.ONE_WAY, chain=chain)
    commands = plan_list(_hosts(hosts), options)
    orchestrator = _orchestrator(ssh_config_file, user, identity_file,
                                 secret_provider)
    report = orchestrator.apply(commands)
    logger.debug("Partition rules:\n%s", format_report(report))
    if report.command_errors:
        raise report.command_errors[0]
    return {host: "\n".join(outputs)
            for host, outputs in report.outputs().items() if outputs}
