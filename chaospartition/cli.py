#!/usr/bin/env python3
"""
chaos-partition: inject and remove network partitions between hosts.

    chaos-partition drop [--two-way] [--mode REJECT|DROP|TCP_RESET] HOST1 HOST2
    chaos-partition list HOST...
    chaos-partition reset HOST...
    chaos-partition split left=HOST[,HOST...] right=HOST[,HOST...]
"""
import argparse
import logging
import sys

import logzero
from logzero import logger

from chaospartition.common import (Direction, PartitionError, PartitionMode,
                                   PartitionOptions, current_user,
                                   DEFAULT_PARTITION_CHAIN,
                                   DEFAULT_PARTITION_COMMAND_TIMEOUT,
                                   DEFAULT_PARTITION_CONNECT_TIMEOUT,
                                   DEFAULT_PARTITION_MODE,
                                   DEFAULT_PARTITION_SSH_CONFIG_FILE,
                                   DEFAULT_PARTITION_WORKERS)
from chaospartition.execute.execute import (Credentials,
                                            TerminalSecretProvider)
from chaospartition.orchestrator import Orchestrator, format_report
from chaospartition.rules import (parse_split_args, plan_drop, plan_list,
                                  plan_reset, plan_split)

LOG_LEVEL_HELP = """Logging level.
                      [LOG-LEVEL]: notset, debug, info, warning, error, critical
                      Default: warning"""
levels = {
    'notset': logging.NOTSET,
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
    'critical': logging.CRITICAL
}


def log_level(v):
    if v.lower() in levels.keys():
        return levels[v.lower()]
    else:
        raise argparse.ArgumentTypeError(
            'Expected one of the following: {}.'.format(
                 ', '.join(levels.keys())))


def partition_mode(v):
    try:
        return PartitionMode.from_name(v)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def positive_int(v):
    try:
        value = int(v)
    except ValueError:
        raise argparse.ArgumentTypeError('Expected an integer, got {!r}'.format(
            v))
    if value < 1:
        raise argparse.ArgumentTypeError('Expected a positive integer, got '
                                         '{}'.format(value))
    return value


def program_args():
    parser = argparse.ArgumentParser(
        prog='chaos-partition',
        description='Inject and remove network partitions between hosts by '
                    'managing an iptables chain on each host over SSH.')

    parser.add_argument('-l', '--log-level', type=log_level,
                        default=logging.WARNING,
                        help=LOG_LEVEL_HELP)

    parser.add_argument('--ssh-config-file', help='The relative or absolute '
                        'path to an SSH config file. Default: the files ssh '
                        'itself reads.',
                        default=DEFAULT_PARTITION_SSH_CONFIG_FILE)

    parser.add_argument('--user', help='Remote login name. Default: the '
                        'User set for the host in ssh_config, else the '
                        'current user ({}).'.format(current_user()),
                        default=None)

    parser.add_argument('--identity-file', help='Private key used to log in.'
                        ' Default: None', default=None)

    parser.add_argument('--chain', help='The iptables chain that holds every '
                        'rule this tool manages. Default: '
                        '{}'.format(DEFAULT_PARTITION_CHAIN),
                        default=DEFAULT_PARTITION_CHAIN)

    parser.add_argument('--workers', type=positive_int, help='Maximum number '
                        'of hosts to work on at once. Default: '
                        '{}'.format(DEFAULT_PARTITION_WORKERS),
                        default=DEFAULT_PARTITION_WORKERS)

    parser.add_argument('--connect-timeout', type=positive_int, help='Seconds '
                        'to wait for an SSH connection. Default: '
                        '{}'.format(DEFAULT_PARTITION_CONNECT_TIMEOUT),
                        default=DEFAULT_PARTITION_CONNECT_TIMEOUT)

    parser.add_argument('--command-timeout', type=positive_int, help='Seconds '
                        'a remote command may run. Default: no limit',
                        default=DEFAULT_PARTITION_COMMAND_TIMEOUT)

    subparsers = parser.add_subparsers(dest='action', metavar='ACTION')
    subparsers.required = True

    drop = subparsers.add_parser('drop', help='Block traffic from host1 to '
                                 'host2. With --two-way, host2 to host1 is '
                                 'also dropped.')
    drop.add_argument('--two-way', action='store_true', default=False,
                      help='Block both directions.')
    drop.add_argument('--mode', type=partition_mode,
                      default=DEFAULT_PARTITION_MODE,
                      help='REJECT, DROP or TCP_RESET. Default: '
                           '{}'.format(DEFAULT_PARTITION_MODE.name))
    drop.add_argument('host1')
    drop.add_argument('host2')

    list_parser = subparsers.add_parser('list', help='Show the partition '
                                        'rules on each host.')
    list_parser.add_argument('hosts', nargs='+', metavar='host')

    reset = subparsers.add_parser('reset', help='Remove every partition rule '
                                  'from each host.')
    reset.add_argument('hosts', nargs='+', metavar='host')

    split = subparsers.add_parser('split', help='Partition two groups of '
                                  'hosts from each other, e.g. '
                                  'split left=a,b right=c,d')
    split.add_argument('groups', nargs='+', metavar='left=|right=',
                       help='left=<hosts> right=<hosts>, comma or space '
                            'separated, in either order.')

    return parser


def parse_args(argv=None, parser=None):
    parser = parser or program_args()
    return parser.parse_args(args=argv)


def init(args):
    logzero.loglevel(args.log_level)
    logger.debug("Initializing...")
    logger.debug("args: %s", args)


def plan(args):
    """
    Turn parsed arguments into (commands, connection_errors_fatal).
    """
    if args.action == 'drop':
        options = PartitionOptions(
            mode=args.mode,
            direction=Direction.TWO_WAY if args.two_way else Direction.ONE_WAY,
            chain=args.chain)
        return plan_drop(args.host1, args.host2, options), True

    options = PartitionOptions(mode=DEFAULT_PARTITION_MODE,
                               direction=Direction.ONE_WAY, chain=args.chain)
    if args.action == 'list':
        return plan_list(args.hosts, options), False
    if args.action == 'reset':
        return plan_reset(args.hosts, options), False
    if args.action == 'split':
        return plan_split(parse_split_args(args.groups), options), False
    raise PartitionError("Unknown action {!r}".format(args.action))


def main(argv=None, secret_provider=None, out=None):
    out = out or sys.stdout
    parser = program_args()
    args = parse_args(argv, parser)
    init(args)

    try:
        commands, connection_errors_fatal = plan(args)
    except PartitionError as e:
        parser.error(str(e))

    credentials = Credentials(user=args.user,
                              ssh_config_file=args.ssh_config_file,
                              identity_file=args.identity_file,
                              connect_timeout=args.connect_timeout)
    orchestrator = Orchestrator(
        credentials=credentials,
        secret_provider=secret_provider or TerminalSecretProvider(),
        workers=args.workers, command_timeout=args.command_timeout)

    report = orchestrator.apply(commands,
                                connection_errors_fatal=connection_errors_fatal)
    out.write(format_report(report))

    if report.command_errors:
        error = report.command_errors[0]
        logger.error("Aborting: %s", error)
        return report.exit_code
    if report.fatal:
        for error in report.connection_errors:
            logger.error("Aborting: %s", error)
        return report.exit_code
    for error in report.connection_errors:
        logger.warning("Skipped %s", error)
    return 0


def run():
    sys.exit(main())


if __name__ == '__main__':
    run()
