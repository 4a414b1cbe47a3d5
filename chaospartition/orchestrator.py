"""
Fan a plan out over SSH, one session per host, and collect a report.

Hosts are independent: a failure to connect to, or to run a command on, one
host never stops any other host's commands. Whether a failure is fatal for
the invocation as a whole is decided afterwards, from the Report.
"""
import textwrap

from collections import OrderedDict
from multiprocessing.pool import ThreadPool
from typing import Callable, Dict, List, Optional, Union

from logzero import logger

from chaospartition.common import (CommandError, HostConnectionError,
                                   PartitionError, TransportError,
                                   DEFAULT_PARTITION_SUDO_PROMPT,
                                   DEFAULT_PARTITION_WORKERS)
from chaospartition.execute.execute import (Credentials, ExecResult,
                                            InteractiveExecutor, RemoteExecutor,
                                            check)
from chaospartition.rules import HostCommand

Outcome = Union[ExecResult, PartitionError]

INDENT = "  "


def group_by_host(commands: List[HostCommand]
                  ) -> 'OrderedDict[str, List[HostCommand]]':
    """
    Group a plan by target host, keeping first-seen host order and the
    order of each host's commands.
    """
    grouped = OrderedDict()
    for command in commands:
        grouped.setdefault(command.host, []).append(command)
    return grouped


class Report(object):
    """
    Outcomes of one invocation, keyed by host in plan order.

    Each host maps to the ExecResults its executor returned (one for the
    host's merged script with InteractiveExecutor), or a single
    HostConnectionError when no session could be opened.
    """

    def __init__(self, outcomes: Dict[str, List[Outcome]],
                 connection_errors_fatal: bool = False):
        self.outcomes = outcomes
        self.connection_errors_fatal = connection_errors_fatal

    def __getitem__(self, host: str) -> List[Outcome]:
        return self.outcomes[host]

    def __iter__(self):
        return iter(self.outcomes)

    def __len__(self):
        return len(self.outcomes)

    def items(self):
        return self.outcomes.items()

    @property
    def connection_errors(self) -> List[PartitionError]:
        errors = []
        for outcomes in self.outcomes.values():
            for outcome in outcomes:
                if isinstance(outcome, (HostConnectionError, TransportError)):
                    errors.append(outcome)
                elif isinstance(outcome, ExecResult) and \
                        outcome.error is not None:
                    errors.append(outcome.error)
        return errors

    @property
    def command_errors(self) -> List[CommandError]:
        errors = []
        for host, outcomes in self.outcomes.items():
            for outcome in outcomes:
                if isinstance(outcome, ExecResult) and \
                        outcome.error is None and outcome.return_code != 0:
                    errors.append(CommandError(host, outcome.return_code,
                                               outcome.stderr or
                                               outcome.stdout))
        return errors

    @property
    def ok(self) -> bool:
        return not self.command_errors and not self.connection_errors

    @property
    def fatal(self) -> bool:
        if self.command_errors:
            return True
        return self.connection_errors_fatal and bool(self.connection_errors)

    @property
    def exit_code(self) -> int:
        errors = self.command_errors
        if errors:
            return errors[0].return_code or 1
        if self.fatal:
            return 1
        return 0

    def outputs(self) -> Dict[str, List[str]]:
        """
        Rendered output of every successful command, keyed by host.
        """
        rtn = OrderedDict()
        for host, outcomes in self.outcomes.items():
            rtn[host] = [check(o) for o in outcomes
                         if isinstance(o, ExecResult) and o.error is None and
                         o.return_code == 0]
        return rtn


def _indent(text: str, level: int) -> str:
    return textwrap.indent(text.rstrip("\n"), INDENT * level)


def format_outcome(outcome: Outcome) -> str:
    if isinstance(outcome, HostConnectionError):
        return "\n".join([_indent("cannot run on host {}".format(outcome.host),
                                  1),
                          _indent(str(outcome), 2)])
    if outcome.error is not None:
        return "\n".join([_indent("transport failure", 1),
                          _indent(str(outcome.error), 2)])
    if outcome.return_code != 0:
        detail = outcome.stderr or outcome.stdout or ""
        lines = [_indent("failed with exit status {}".format(
            outcome.return_code), 1)]
        if detail.strip():
            lines.append(_indent(detail, 2))
        return "\n".join(lines)
    output = check(outcome)
    lines = [_indent("ok", 1)]
    if output.strip():
        lines.append(_indent(output, 2))
    return "\n".join(lines)


def format_report(report: Report) -> str:
    """
    Render a report for the console, one indented block per host.
    """
    blocks = []
    for host, outcomes in report.items():
        lines = ["{}:".format(host)]
        lines.extend(format_outcome(outcome) for outcome in outcomes)
        blocks.append("\n".join(lines))
    return "\n".join(blocks) + ("\n" if blocks else "")


class Orchestrator(object):
    """
    Run a plan on every host it names, concurrently, and build a Report.
    """

    def __init__(self, credentials: Credentials = None,
                 secret_provider: Callable[[str], str] = None,
                 workers: int = DEFAULT_PARTITION_WORKERS,
                 command_timeout: Optional[float] = None,
                 prompt: str = DEFAULT_PARTITION_SUDO_PROMPT,
                 executor: RemoteExecutor = None):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.workers = workers
        self.executor = executor or InteractiveExecutor(
            credentials=credentials, secret_provider=secret_provider,
            prompt=prompt, command_timeout=command_timeout)

    def _run_host(self, host: str, commands: List[HostCommand]
                  ) -> List[Outcome]:
        logger.info("Running %s on %s", ', '.join(c.action for c in commands),
                    host)
        try:
            return self.executor.execute(host, commands)
        except HostConnectionError as e:
            logger.error("Cannot run on host %s", host)
            logger.debug("Connection failure detail: %s", e)
            return [e]
        except (OSError, ValueError) as e:
            # Unreadable ssh config or identity file
            logger.error("Cannot run on host %s: %s", host, e)
            return [HostConnectionError(host, str(e))]

    def apply(self, commands: List[HostCommand],
              connection_errors_fatal: bool = False) -> Report:
        """
        Execute a plan and return its Report.

        :param commands: Planner output. Required.
        :type commands: List[HostCommand]
        :param connection_errors_fatal: Treat a host that can not be reached
            as fatal for the whole invocation.
            Optional. (Default: False)
        :type connection_errors_fatal: bool
        :return: Report
        """
        grouped = group_by_host(commands)
        outcomes = OrderedDict((host, []) for host in grouped)
        if not grouped:
            return Report(outcomes, connection_errors_fatal)

        size = min(self.workers, len(grouped))
        with ThreadPool(processes=size) as pool:
            results = pool.starmap(self._run_host, grouped.items())
        for host, result in zip(grouped, results):
            outcomes[host] = result

        report = Report(outcomes, connection_errors_fatal)
        logger.debug("%d host(s), %d command error(s), %d connection "
                     "error(s)", len(report), len(report.command_errors),
                     len(report.connection_errors))
        return report
