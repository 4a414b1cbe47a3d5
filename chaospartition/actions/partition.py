from chaospartition.common import (Direction, PartitionError, PartitionMode,
                                   PartitionOptions, to_bool,
                                   DEFAULT_PARTITION_CHAIN,
                                   DEFAULT_PARTITION_SSH_CONFIG_FILE)
from chaospartition.execute.execute import Credentials
from chaospartition.orchestrator import Orchestrator, Report, format_report
from chaospartition.rules import (PartitionGroup, parse_hosts, plan_drop,
                                  plan_reset, plan_split)
from logzero import logger
from typing import Callable, List, Union


def _hosts(hosts: Union[str, List[str]]) -> List[str]:
    if isinstance(hosts, str):
        return parse_hosts(hosts)
    return list(hosts)


def _orchestrator(ssh_config_file: str, user: str, identity_file: str,
                  secret_provider: Callable[[str], str]) -> Orchestrator:
    credentials = Credentials(user=user, ssh_config_file=ssh_config_file,
                              identity_file=identity_file)
    return Orchestrator(credentials=credentials,
                        secret_provider=secret_provider)


def _log_report(report: Report) -> bool:
    text = format_report(report)
    if report.fatal:
        logger.error("Partition action failed:\n%s", text)
        return False
    logger.info("Partition action results:\n%s", text)
    return True


def drop_traffic(host1: str, host2: str, mode: str = "REJECT",
                 two_way: Union[bool, str] = False,
                 chain: str = DEFAULT_PARTITION_CHAIN,
                 ssh_config_file: str = DEFAULT_PARTITION_SSH_CONFIG_FILE,
                 user: str = None, identity_file: str = None,
                 secret_provider: Callable[[str], str] = None) -> bool:
    """
    Block traffic between two hosts.

    Returns True if the rules were applied on both hosts. Otherwise, returns
    False. Either host being unreachable is a failure.

    :param host1: The first host's alias/hostname. Required.
    :type host1: str
    :param host2: The second host's alias/hostname. Required.
    :type host2: str
    :param mode: One of REJECT, DROP or TCP_RESET.
        Optional. (Default: REJECT)
    :type mode: str
    :param two_way: Also block traffic from host2 to host1? Strings such as
        "yes" or "false" are accepted.
        Optional. (Default: False)
    :type two_way: Union[bool, str]
    :param chain: The iptables chain that holds partition rules.
        Optional. (Default: chaospartition.common.DEFAULT_PARTITION_CHAIN)
    :type chain: str
    :param ssh_config_file: The relative or absolute path to the SSH config
        file.
        Optional. (Default:
        chaospartition.common.DEFAULT_PARTITION_SSH_CONFIG_FILE)
    :type ssh_config_file: str
    :param user: Remote login name. Optional. (Default: current user)
    :type user: str
    :param identity_file: Private key file. Optional. (Default: None)
    :type identity_file: str
    :param secret_provider: Supplies the sudo password when a host asks for
        one. Optional. (Default: read from the terminal)
    :type secret_provider: Callable[[str], str]
    :return: bool
    """
    logger.debug("drop traffic %s -> %s mode: %s two_way: %s", host1, host2,
                 mode, two_way)
    try:
        options = PartitionOptions(
            mode=PartitionMode.from_name(mode),
            direction=Direction.TWO_WAY if to_bool(two_way)
            else Direction.ONE_WAY,
            chain=chain)
        commands = plan_drop(host1, host2, options)
    except (PartitionError, ValueError) as e:
        logger.error("Invalid drop request: %s", e)
        return False

    orchestrator = _orchestrator(ssh_config_file, user, identity_file,
                                 secret_provider)
    report = orchestrator.apply(commands, connection_errors_fatal=True)
    return _log_report(report)


def split_hosts(left: Union[str, List[str]], right: Union[str, List[str]],
                mode: str = "REJECT", chain: str = DEFAULT_PARTITION_CHAIN,
                ssh_config_file: str = DEFAULT_PARTITION_SSH_CONFIG_FILE,
                user: str = None, identity_file: str = None,
                secret_provider: Callable[[str], str] = None) -> bool:
    """
    Partition two groups of hosts so no host in one can reach the other.

    Unreachable hosts are logged and skipped; the remaining hosts are still
    partitioned. Returns False if any reachable host failed to apply its
    rules.

    :param left: Hosts on one side; a list or a comma separated string.
        Required.
    :type left: Union[str, List[str]]
    :param right: Hosts on the other side. Required.
    :type right: Union[str, List[str]]
    :param mode: One of REJECT, DROP or TCP_RESET.
        Optional. (Default: REJECT)
    :type mode: str
    :return: bool
    """
    logger.debug("split left: %s right: %s mode: %s", left, right, mode)
    try:
        group = PartitionGroup(_hosts(left), _hosts(right))
        options = PartitionOptions(mode=PartitionMode.from_name(mode),
                                   direction=Direction.TWO_WAY, chain=chain)
        commands = plan_split(group, options)
    except (PartitionError, ValueError) as e:
        logger.error("Invalid split request: %s", e)
        return False

    orchestrator = _orchestrator(ssh_config_file, user, identity_file,
                                 secret_provider)
    return _log_report(orchestrator.apply(commands))


def reset_partitions(hosts: Union[str, List[str]],
                     chain: str = DEFAULT_PARTITION_CHAIN,
                     ssh_config_file: str = DEFAULT_PARTITION_SSH_CONFIG_FILE,
                     user: str = None, identity_file: str = None,
                     secret_provider: Callable[[str], str] = None) -> bool:
    """
    Remove every partition rule from the given hosts.

    Hosts that never had a partition applied are not an error.

    :param hosts: A list of hosts or a comma separated string. Required.
    :type hosts: Union[str, List[str]]
    :return: bool
    """
    try:
        commands = plan_reset(_hosts(hosts), PartitionOptions(
            mode=PartitionMode.REJECT, direction=Direction.ONE_WAY,
            chain=chain))
    except PartitionError as e:
        logger.error("Invalid reset request: %s", e)
        return False

    orchestrator = _orchestrator(ssh_config_file, user, identity_file,
                                 secret_provider)
    return _log_report(orchestrator.apply(commands))
