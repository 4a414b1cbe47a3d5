"""
Partition rule planner.

Turns a partition intent (drop, list, reset, split) into the iptables
commands each host has to run. Nothing in this module touches the network;
every function is deterministic and returns plain values.

All rules live in one chain (DEFAULT_PARTITION_CHAIN unless overridden). The
chain is jumped to from INPUT and OUTPUT, so listing or resetting it only
ever touches rules this package created.

Commands are assembled from argument lists and quoted with shlex. Host names
are never pasted into shell text unquoted.
"""
import re
import shlex

from collections import namedtuple
from itertools import product
from typing import Iterable, List, Sequence, Tuple

from chaospartition.common import (Direction, PartitionMode, PartitionOptions,
                                   PlanError, default_options,
                                   DEFAULT_PARTITION_SUDO_PROMPT)

IPTABLES = ['iptables', '-w']
HOOKS = ['INPUT', 'OUTPUT']

RuleSpec = namedtuple('RuleSpec', ['source', 'destination', 'mode'])

# argv: the command. check: an argv that succeeds when argv's effect is
# already in place (argv is skipped). tolerant: a failure of argv is ignored.
Step = namedtuple('Step', ['argv', 'check', 'tolerant'])


def step(argv: List[str], check: List[str] = None,
         tolerant: bool = False) -> Step:
    return Step(tuple(argv), tuple(check) if check else None, tolerant)


def render_step(s: Step) -> str:
    line = shlex.join(s.argv)
    if s.check:
        line = "{} || {}".format(shlex.join(s.check), line)
    if s.tolerant:
        line = "{} || true".format(line)
    return line


class HostCommand(namedtuple('HostCommand', ['host', 'action', 'steps'])):
    """
    Everything one host has to run for one intent.

    `steps` run in order inside a single `sh -c` under sudo and stop at the
    first step that fails without being tolerated.
    """
    __slots__ = ()

    @property
    def script(self) -> str:
        return "\n".join(["set -e"] + [render_step(s) for s in self.steps])

    def argv(self, sudo_prompt: str = DEFAULT_PARTITION_SUDO_PROMPT
             ) -> List[str]:
        return ['sudo', '-p', sudo_prompt, 'sh', '-c', self.script]

    def command_line(self,
                     sudo_prompt: str = DEFAULT_PARTITION_SUDO_PROMPT) -> str:
        return shlex.join(self.argv(sudo_prompt))


def merge_host_commands(commands: Sequence[HostCommand]) -> HostCommand:
    """
    Fold one host's commands into a single command, steps in order.

    sudo prompts once per terminal, so a host that runs its whole share of a
    plan as one script is asked for its password once. `set -e` in the
    script still stops at the first failing step.
    """
    if not commands:
        raise PlanError("Nothing to merge")
    hosts = {c.host for c in commands}
    if len(hosts) != 1:
        raise PlanError("Commands for more than one host: {}".format(
            ', '.join(sorted(hosts))))
    actions = []
    steps = []
    for command in commands:
        if command.action not in actions:
            actions.append(command.action)
        steps.extend(command.steps)
    return HostCommand(commands[0].host, '+'.join(actions), tuple(steps))


def validate_host(host: str) -> str:
    """
    Reject host names that can not possibly be an address.

    :param host: A hostname or IP address.
    :type host: str
    :return: str
    """
    if not isinstance(host, str) or not host.strip():
        raise PlanError("Host must be a non-empty string, got {!r}".format(
            host))
    host = host.strip()
    if re.search(r'\s', host):
        raise PlanError("Host must not contain whitespace: {!r}".format(host))
    return host


def parse_hosts(text: str) -> List[str]:
    """
    Split a comma and/or whitespace separated host list.

    Empty entries are dropped and duplicates removed, first occurrence wins.
    """
    hosts = []
    for token in re.split(r'[,\s]+', text or ''):
        if token and token not in hosts:
            hosts.append(validate_host(token))
    return hosts


def parse_split_args(args: Sequence[str]) -> 'PartitionGroup':
    """
    Build a PartitionGroup from `left=...` and `right=...` arguments.

    Either order is accepted. A side may be spread over several arguments,
    e.g. `left=a, b right=c` arrives as ['left=a,', 'b', 'right=c'].
    """
    sides = {}
    current = None
    for arg in args:
        key, sep, value = arg.partition('=')
        if sep and key.strip().lower() in ('left', 'right'):
            current = key.strip().lower()
            if current in sides:
                raise PlanError("{}= given more than once".format(current))
            sides[current] = []
        elif current is None:
            raise PlanError("Expected left=<hosts> or right=<hosts>, "
                            "got {!r}".format(arg))
        else:
            value = arg
        sides[current].extend(parse_hosts(value))

    missing = [side for side in ('left', 'right') if not sides.get(side)]
    if missing:
        raise PlanError("split needs hosts on both sides; missing: {}".format(
            ', '.join(missing)))
    return PartitionGroup(sides['left'], sides['right'])


class PartitionGroup(namedtuple('PartitionGroup', ['left', 'right'])):
    """
    Two disjoint, non-empty sets of hosts that must not see each other.
    """
    __slots__ = ()

    def __new__(cls, left: Iterable[str], right: Iterable[str]):
        left = _unique(validate_host(h) for h in left)
        right = _unique(validate_host(h) for h in right)
        if not left or not right:
            raise PlanError("Both sides of a split need at least one host")
        overlap = [h for h in left if h in right]
        if overlap:
            raise PlanError("Hosts on both sides of a split: {}".format(
                ', '.join(overlap)))
        return super().__new__(cls, tuple(left), tuple(right))

    def pairs(self) -> List[Tuple[str, str]]:
        return list(product(self.left, self.right))


def _unique(hosts: Iterable[str]) -> List[str]:
    seen = []
    for host in hosts:
        if host not in seen:
            seen.append(host)
    return seen


def target_args(mode: PartitionMode) -> List[str]:
    if mode is PartitionMode.REJECT:
        return ['-j', 'REJECT']
    if mode is PartitionMode.DROP:
        return ['-j', 'DROP']
    if mode is PartitionMode.TCP_RESET:
        return ['-p', 'tcp', '-j', 'REJECT', '--reject-with', 'tcp-reset']
    raise PlanError("Unsupported partition mode: {!r}".format(mode))


def rule_args(chain: str, source: str, destination: str,
              mode: PartitionMode) -> List[str]:
    return [chain, '-s', source, '-d', destination] + target_args(mode)


def ensure_chain_steps(chain: str) -> List[Step]:
    steps = [step(IPTABLES + ['-N', chain], tolerant=True)]
    for hook in HOOKS:
        steps.append(step(IPTABLES + ['-I', hook, '-j', chain],
                          check=IPTABLES + ['-C', hook, '-j', chain]))
    return steps


def append_rule_steps(chain: str, spec: RuleSpec,
                      both_directions: bool = False) -> List[Step]:
    matches = [(spec.source, spec.destination)]
    if both_directions:
        matches.append((spec.destination, spec.source))
    steps = []
    for source, destination in matches:
        args = rule_args(chain, source, destination, spec.mode)
        steps.append(step(IPTABLES + ['-A'] + args,
                          check=IPTABLES + ['-C'] + args))
    return steps


def drop_specs(host1: str, host2: str, mode: PartitionMode,
               direction: Direction) -> List[RuleSpec]:
    """
    The blocks a drop intent asks for.

    One-way is the single block host1 -> host2. Two-way adds host2 -> host1.
    """
    host1, host2 = validate_host(host1), validate_host(host2)
    if host1 == host2:
        raise PlanError("Can not partition {} from itself".format(host1))
    specs = [RuleSpec(host1, host2, mode)]
    if direction is Direction.TWO_WAY:
        specs.append(RuleSpec(host2, host1, mode))
    return specs


def plan_drop(host1: str, host2: str,
              options: PartitionOptions = None) -> List[HostCommand]:
    """
    Commands that block traffic between host1 and host2.

    two-way: host1 gets the host1 -> host2 rule, host2 gets host2 -> host1.

    one-way: the host1 -> host2 spec is applied on both hosts, and on each
    host it matches both host1 -> host2 and host2 -> host1 packets. This
    keeps the behaviour existing partition experiments rely on.

    :param host1: First host of the pair. Required.
    :type host1: str
    :param host2: Second host of the pair. Required.
    :type host2: str
    :param options: Mode, direction and chain to use.
        Optional. (Default: chaospartition.common.default_options())
    :type options: PartitionOptions
    :return: List[HostCommand]
    """
    options = options or default_options()
    specs = drop_specs(host1, host2, options.mode, options.direction)
    action = "drop {} {} -> {}".format(options.mode.name, specs[0].source,
                                       specs[0].destination)

    if options.direction is Direction.TWO_WAY:
        return [HostCommand(spec.source, action,
                            tuple(ensure_chain_steps(options.chain) +
                                  append_rule_steps(options.chain, spec)))
                for spec in specs]

    spec = specs[0]
    steps = tuple(ensure_chain_steps(options.chain) +
                  append_rule_steps(options.chain, spec, both_directions=True))
    return [HostCommand(spec.source, action, steps),
            HostCommand(spec.destination, action, steps)]


def plan_list(hosts: Iterable[str],
              options: PartitionOptions = None) -> List[HostCommand]:
    """
    One read-only listing of the managed chain per host, in input order.
    """
    options = options or default_options()
    hosts = [validate_host(h) for h in hosts]
    if not hosts:
        raise PlanError("list needs at least one host")
    listing = step(IPTABLES + ['-L', options.chain, '-n', '-v'], tolerant=True)
    return [HostCommand(host, "list", (listing,)) for host in hosts]


def plan_reset(hosts: Iterable[str],
               options: PartitionOptions = None) -> List[HostCommand]:
    """
    Per host, in input order: unhook, flush and delete the managed chain.

    Every step tolerates the chain (or the jump) not existing.
    """
    options = options or default_options()
    hosts = [validate_host(h) for h in hosts]
    if not hosts:
        raise PlanError("reset needs at least one host")
    chain = options.chain
    steps = [step(IPTABLES + ['-D', hook, '-j', chain], tolerant=True)
             for hook in HOOKS]
    steps.append(step(IPTABLES + ['-F', chain], tolerant=True))
    steps.append(step(IPTABLES + ['-X', chain], tolerant=True))
    return [HostCommand(host, "reset", tuple(steps)) for host in hosts]


def plan_split(group: PartitionGroup,
               options: PartitionOptions = None) -> List[HostCommand]:
    """
    Two-way drops for every (left, right) pair of a PartitionGroup.

    The direction in `options` is ignored; a split is always two-way.
    """
    options = (options or default_options())._replace(
        direction=Direction.TWO_WAY)
    commands = []
    for left, right in group.pairs():
        commands.extend(plan_drop(left, right, options))
    return commands
