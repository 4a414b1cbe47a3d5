import abc
import codecs
import getpass
import json
import os
import re
import socket
import threading
import time

from collections import namedtuple

from logzero import logger

from fabric import Connection, Config
from paramiko import AuthenticationException, SSHException

from typing import Callable, List, Optional

from chaospartition.common import (CommandError, HostConnectionError,
                                   TransportError,
                                   DEFAULT_PARTITION_CONNECT_TIMEOUT,
                                   DEFAULT_PARTITION_SUDO_PROMPT)
from chaospartition.rules import HostCommand, merge_host_commands

Credentials = namedtuple('Credentials', ['user', 'ssh_config_file',
                                         'identity_file', 'connect_timeout'],
                         defaults=[None, None, None,
                                   DEFAULT_PARTITION_CONNECT_TIMEOUT])

ExecResult = namedtuple('ExecResult', ['host', 'command', 'return_code',
                                       'stdout', 'stderr', 'error'],
                        defaults=[None])

# iptables chatter that idempotent create/check/delete steps produce on
# purpose. None of it means the command failed.
BENIGN_PATTERN = re.compile(
    r"No chain/target/match by that name"
    r"|Bad rule \(does a matching rule exist in that chain\?\)"
    r"|Chain already exists"
    r"|Couldn't load target"
)

READ_SIZE = 32768
POLL_INTERVAL = 0.05


def ok(result: ExecResult) -> bool:
    return result.error is None and result.return_code == 0


def render_output(stdout: str) -> str:
    """
    Pretty print stdout when it holds JSON, otherwise return it unchanged.

    :param stdout: Raw command output.
    :type stdout: str
    :return: str
    """
    try:
        return json.dumps(json.loads(stdout), indent=2)
    except (TypeError, ValueError):
        return stdout


def check(result: ExecResult) -> str:
    """
    Apply the result contract to one command's result.

    A transport failure is re-raised. A non-zero exit raises CommandError
    carrying stderr (or the filtered stdout when stderr is empty, which is
    always the case under a pty). Otherwise the rendered output is returned.

    :param result: The result to check.
    :type result: ExecResult
    :return: str
    """
    if result.error is not None:
        raise result.error
    if result.return_code != 0:
        raise CommandError(result.host, result.return_code,
                           result.stderr or result.stdout)
    return render_output(result.stdout)


class TerminalSecretProvider(object):
    """
    Read a secret from the controlling terminal without echoing it.

    Sessions for many hosts can ask at the same time; the lock keeps their
    prompts from interleaving on one terminal.
    """
    _lock = threading.Lock()

    def __call__(self, prompt: str) -> str:
        with self._lock:
            return getpass.getpass(prompt)


class InteractiveStream(object):
    """
    Filter for a command's stdout that also answers one sudo prompt.

    feed() takes decoded text as it arrives and returns the text to write
    back to the remote process. Output is kept line by line except:

    - the first occurrence of the sudo prompt, which is answered with a
      line from the secret provider and left out of stdout;
    - lines matching BENIGN_PATTERN, which are logged at DEBUG and dropped.

    A prompt seen again after it has been answered is kept as output and
    sets `rejected`; the caller is expected to close the remote stdin so
    the command fails instead of waiting for input.
    """

    def __init__(self, host: str = '',
                 secret_provider: Callable[[str], str] = None,
                 prompt: str = DEFAULT_PARTITION_SUDO_PROMPT,
                 benign_pattern=BENIGN_PATTERN):
        self.host = host
        self.secret_provider = secret_provider
        self.prompt = prompt
        self.prompt_pattern = re.compile(re.escape(prompt.strip()))
        self.benign_pattern = benign_pattern
        self.awaiting_secret = False
        self.rejected = False
        self.lines = []
        self.suppressed = []
        self._pending = ''
        self._after_answer = False

    @property
    def stdout(self) -> str:
        if not self.lines:
            return ''
        return "\n".join(self.lines) + "\n"

    def feed(self, text: str) -> List[str]:
        responses = []
        self._pending += text
        parts = self._pending.splitlines(keepends=True)
        if parts and not parts[-1].endswith('\n'):
            self._pending = parts.pop()
        else:
            self._pending = ''
        for part in parts:
            self._line(part.rstrip('\r\n'), responses)

        # sudo does not end its prompt with a newline
        match = self.prompt_pattern.search(self._pending)
        if match and not self.awaiting_secret:
            self._answer(responses)
            self._pending = (self._pending[:match.start()] +
                             self._pending[match.end():]).lstrip()
        elif match:
            self.rejected = True
        return responses

    def close(self) -> None:
        if self._pending:
            self._line(self._pending.rstrip('\r\n'), [])
            self._pending = ''

    def _answer(self, responses: List[str]) -> None:
        if self.secret_provider is None:
            raise TransportError(self.host, "Remote command asked for a "
                                 "password and no secret provider is set")
        prompt = "[{}] {}".format(self.host, self.prompt) if self.host \
            else self.prompt
        secret = self.secret_provider(prompt)
        responses.append("{}\n".format(secret))
        self.awaiting_secret = True
        self._after_answer = True
        logger.debug("Answered sudo prompt on %s", self.host)

    def _line(self, line: str, responses: List[str]) -> None:
        match = self.prompt_pattern.search(line)
        if match and not self.awaiting_secret:
            self._answer(responses)
            line = (line[:match.start()] + line[match.end():]).strip()
            if not line:
                return
        elif match:
            self.rejected = True

        if self._after_answer:
            self._after_answer = False
            if not line.strip():
                return

        if self.benign_pattern.search(line):
            logger.debug("Suppressed on %s: %s", self.host, line)
            self.suppressed.append(line)
            return
        self.lines.append(line)


class Session(object):
    """
    One authenticated SSH connection to one host.

    Use as a context manager; the connection is closed on every exit path.
    """

    def __init__(self, host: str, connection: Connection):
        self.host = host
        self.connection = connection

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def close(self) -> None:
        try:
            self.connection.close()
        except Exception as e:
            logger.debug("Error closing connection to %s: %s", self.host, e)

    def open_channel(self):
        transport = self.connection.client.get_transport()
        if transport is None or not transport.is_active():
            raise TransportError(self.host, "SSH transport is not active")
        return transport.open_session()

    def run(self, command: str, pty: bool = True,
            secret_provider: Callable[[str], str] = None,
            prompt: str = DEFAULT_PARTITION_SUDO_PROMPT,
            timeout: Optional[float] = None) -> ExecResult:
        """
        Execute one command and collect its output.

        :param command: Shell command line to execute. Required.
        :type command: str
        :param pty: Request a pseudo-terminal (sudo needs one to prompt).
            Optional. (Default: True)
        :type pty: bool
        :param secret_provider: Called with the prompt text when the command
            asks for a password; returns the password.
            Optional. (Default: None)
        :type secret_provider: Callable[[str], str]
        :param prompt: The sudo prompt to look for.
            Optional. (Default: DEFAULT_PARTITION_SUDO_PROMPT)
        :type prompt: str
        :param timeout: Seconds the command may run. None waits forever.
            Optional. (Default: None)
        :type timeout: float
        :return: ExecResult
        """
        stream = InteractiveStream(self.host, secret_provider, prompt)
        stderr = []
        try:
            channel = self.open_channel()
            try:
                if pty:
                    channel.get_pty()
                channel.exec_command(command)
                self._pump(channel, stream, stderr, timeout)
                return_code = channel.recv_exit_status()
            finally:
                channel.close()
        except (SSHException, socket.error, EOFError) as e:
            raise TransportError(self.host, str(e) or type(e).__name__) from e

        stream.close()
        return ExecResult(self.host, command, return_code, stream.stdout,
                          "".join(stderr))

    def _pump(self, channel, stream: InteractiveStream, stderr: List[str],
              timeout: Optional[float]) -> None:
        out_decoder = codecs.getincrementaldecoder('utf-8')('replace')
        err_decoder = codecs.getincrementaldecoder('utf-8')('replace')
        started = time.monotonic()
        closed_stdin = False
        while True:
            busy = False
            if channel.recv_ready():
                busy = True
                data = channel.recv(READ_SIZE)
                for response in stream.feed(out_decoder.decode(data)):
                    channel.sendall(response.encode('utf-8'))
                if stream.rejected and not closed_stdin:
                    logger.error("Password rejected on %s", self.host)
                    channel.shutdown_write()
                    closed_stdin = True
            if channel.recv_stderr_ready():
                busy = True
                stderr.append(err_decoder.decode(channel.recv_stderr(READ_SIZE)))
            if busy:
                continue
            # stdout and stderr share one EOF on an SSH channel
            if channel.eof_received and channel.exit_status_ready():
                break
            if timeout is not None and time.monotonic() - started > timeout:
                raise TransportError(self.host, "Remote execution has "
                                     "exceeded timeout of {}s".format(timeout))
            time.sleep(POLL_INTERVAL)

        stream.feed(out_decoder.decode(b'', final=True))
        stderr.append(err_decoder.decode(b'', final=True))


def _is_readable_file(path, file_kind):
    if not isinstance(path, str):
        raise ValueError("path to file must be a string")

    if os.access(path, os.R_OK):
        if os.path.isfile(path):
            return
        else:
            raise OSError("Path is not to a file -- '%s'" % str(path))
    else:
        raise OSError("Unable to access the file (not readable) -- %s -- '%s'"
                      % (file_kind, path))


def _create_config(ssh_config_file=None):
    if ssh_config_file:
        ssh_config_file = os.path.expanduser(ssh_config_file)
        _is_readable_file(ssh_config_file, 'ssh_config')
    return Config(runtime_ssh_path=ssh_config_file)


def _collect_connect_kwargs(identity_file):
    connect_kwargs = {}

    if identity_file:
        identity_file = os.path.expanduser(identity_file)
        _is_readable_file(identity_file, 'identity_file')
        connect_kwargs['key_filename'] = identity_file

    if not connect_kwargs:
        connect_kwargs = None

    return connect_kwargs


def open_session(host: str, credentials: Credentials = None) -> Session:
    """
    Connect to a host and return an open Session.

    :param host: Hostname, IP address or ssh_config alias. Required.
    :type host: str
    :param credentials: Already resolved login details.
        Optional. (Default: current user, ~/.ssh/config)
    :type credentials: Credentials
    :return: Session
    """
    credentials = credentials or Credentials()
    config = _create_config(credentials.ssh_config_file)
    connect_kwargs = _collect_connect_kwargs(credentials.identity_file)
    connection = Connection(host, user=credentials.user, config=config,
                            connect_timeout=credentials.connect_timeout,
                            connect_kwargs=connect_kwargs)
    try:
        connection.open()
    except AuthenticationException as e:
        connection.close()
        raise HostConnectionError(host, "authentication failed: {}".format(e)
                                  ) from e
    except (SSHException, socket.error, EOFError) as e:
        connection.close()
        raise HostConnectionError(host, str(e) or type(e).__name__) from e
    logger.debug("Connected to %s", host)
    return Session(host, connection)


class RemoteExecutor(metaclass=abc.ABCMeta):

    def execute(self, host: str, commands: List[HostCommand]
                ) -> List[ExecResult]:
        rtn = self._execute_on_host(host, commands)
        return rtn

    @abc.abstractmethod
    def _execute_on_host(self, host: str, commands: List[HostCommand]
                         ) -> List[ExecResult]:
        raise NotImplementedError('users must define _execute_on_host to use '
                                  'this base class')


class InteractiveExecutor(RemoteExecutor):
    """
    Run a host's commands in one session, answering sudo when it asks.

    The commands are merged into one sudo script, so the host asks for its
    password at most once. The script stops at the first step that fails.
    A transport failure is returned in the result's `error` field.
    A connection failure raises HostConnectionError.
    """

    def __init__(self, credentials: Credentials = None,
                 secret_provider: Callable[[str], str] = None,
                 prompt: str = DEFAULT_PARTITION_SUDO_PROMPT,
                 command_timeout: Optional[float] = None,
                 session_factory: Callable[..., Session] = open_session):
        self.credentials = credentials or Credentials()
        self.secret_provider = secret_provider or TerminalSecretProvider()
        self.prompt = prompt
        self.command_timeout = command_timeout
        self.session_factory = session_factory

    def _execute_on_host(self, host: str, commands: List[HostCommand]
                         ) -> List[ExecResult]:
        command = merge_host_commands(commands)
        command_line = command.command_line(self.prompt)
        with self.session_factory(host, self.credentials) as session:
            logger.debug("Running on %s: %s", host, command_line)
            try:
                result = session.run(command_line,
                                     secret_provider=self.secret_provider,
                                     prompt=self.prompt,
                                     timeout=self.command_timeout)
            except TransportError as e:
                logger.error("Transport failure on %s: %s", host, e)
                return [ExecResult(host, command_line, None, '', '', e)]
        if result.return_code != 0:
            logger.error("Command '%s' failed on %s with exit status %s",
                         command.action, host, result.return_code)
        return [result]
