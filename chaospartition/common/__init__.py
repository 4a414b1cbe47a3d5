import getpass

from collections import namedtuple
from enum import Enum


class PartitionMode(Enum):
    """
    All supported ways of refusing a packet that matches a partition rule.
    """
    # Answer with an ICMP port-unreachable
    REJECT = 1
    # Silently discard the packet
    DROP = 2
    # Answer TCP with a RST packet
    TCP_RESET = 3

    @classmethod
    def from_name(cls, name: str) -> 'PartitionMode':
        try:
            return cls[name.strip().upper().replace('-', '_')]
        except KeyError:
            raise ValueError(
                "Unknown partition mode {!r}. Expected one of: {}".format(
                    name, ', '.join(item.name for item in cls)))


class Direction(Enum):
    """
    Which way traffic between a host pair is blocked.
    """
    ONE_WAY = 1
    TWO_WAY = 2


class PartitionError(Exception):
    """Base class for every error raised by chaospartition."""


class PlanError(PartitionError):
    """The requested partition cannot be turned into rules."""


class HostConnectionError(PartitionError):
    """A session to a host could not be established."""

    def __init__(self, host: str, message: str):
        super().__init__("{}: {}".format(host, message))
        self.host = host


class TransportError(PartitionError):
    """An open session broke (or timed out) while a command was running."""

    def __init__(self, host: str, message: str):
        super().__init__("{}: {}".format(host, message))
        self.host = host


class CommandError(PartitionError):
    """A remote command exited with a non-zero status."""

    def __init__(self, host: str, return_code: int, stderr: str):
        detail = stderr.strip() or "exit status {}".format(return_code)
        super().__init__("{}: {}".format(host, detail))
        self.host = host
        self.return_code = return_code
        self.stderr = stderr


# Run-time choices for one invocation. Passed explicitly, never stored
# globally.
PartitionOptions = namedtuple('PartitionOptions',
                              ['mode', 'direction', 'chain'])


def current_user() -> str:
    """
    The local login name, used as the remote login name by default.
    """
    return getpass.getuser()


# Useful for validating boolean user input
true_list = [
   'true', '1', 't', 'y', 'yes'
]
false_list = [
   'false', '0', 'f', 'n', 'no'
]


def to_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if str(value).lower() in true_list:
        return True
    if str(value).lower() in false_list:
        return False
    raise ValueError("Expected a boolean (yes, no, true, false, y, n, 1, or "
                     "0), got {!r}".format(value))


# Partition defaults
# Please keep defaults in lexically acending order by name
DEFAULT_PARTITION_CHAIN="CHAOS-PARTITION"
DEFAULT_PARTITION_COMMAND_TIMEOUT=None
DEFAULT_PARTITION_CONNECT_TIMEOUT=60
DEFAULT_PARTITION_DIRECTION=Direction.ONE_WAY
DEFAULT_PARTITION_MODE=PartitionMode.REJECT
# None lets Fabric load ~/.ssh/config and /etc/ssh/ssh_config itself
DEFAULT_PARTITION_SSH_CONFIG_FILE=None
DEFAULT_PARTITION_SUDO_PROMPT="[chaospartition] sudo password: "
DEFAULT_PARTITION_WORKERS=16


def default_options() -> PartitionOptions:
    return PartitionOptions(mode=DEFAULT_PARTITION_MODE,
                            direction=DEFAULT_PARTITION_DIRECTION,
                            chain=DEFAULT_PARTITION_CHAIN)
