from contextlib import contextmanager


@contextmanager
def patch(owner, attr, value):
    """Monkey patch context manager.

    with patch(os, 'open', myopen):
        ...
    """
    old = getattr(owner, attr)
    setattr(owner, attr, value)
    try:
        yield getattr(owner, attr)
    finally:
        setattr(owner, attr, old)


class FakeChannel(object):
    """
    Stands in for a paramiko Channel. Replays scripted stdout/stderr chunks
    and reports EOF and the exit status once both are drained.

    A None in `stdout` is a poll with nothing ready yet. With `exit_early`
    the exit status is ready before the output has been read. Chunks in
    `on_stdin_closed` arrive, and a channel that does not finish on its own
    finishes, once the remote stdin is closed.
    """

    def __init__(self, stdout=(), stderr=(), exit_status=0, finishes=True,
                 exit_early=False, on_stdin_closed=()):
        self.stdout = list(stdout)
        self.stderr = list(stderr)
        self.exit_status = exit_status
        self.finishes = finishes
        self.exit_early = exit_early
        self.on_stdin_closed = list(on_stdin_closed)
        self.sent = []
        self.command = None
        self.pty = False
        self.write_closed = False
        self.closed = False

    def get_pty(self):
        self.pty = True

    def exec_command(self, command):
        self.command = command

    def recv_ready(self):
        if self.stdout and self.stdout[0] is None:
            self.stdout.pop(0)
            return False
        return bool(self.stdout)

    def recv(self, size):
        return self.stdout.pop(0)

    def recv_stderr_ready(self):
        return bool(self.stderr)

    def recv_stderr(self, size):
        return self.stderr.pop(0)

    @property
    def eof_received(self):
        return self.finishes and not self.stdout and not self.stderr

    def exit_status_ready(self):
        return self.finishes and (self.exit_early or self.eof_received)

    def recv_exit_status(self):
        return self.exit_status

    def sendall(self, data):
        self.sent.append(data)

    def shutdown_write(self):
        self.write_closed = True
        self.stdout.extend(self.on_stdin_closed)
        self.finishes = True

    def close(self):
        self.closed = True


class FakeConnection(object):

    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class SecretRecorder(object):

    def __init__(self, secret='hunter2'):
        self.secret = secret
        self.prompts = []

    def __call__(self, prompt):
        self.prompts.append(prompt)
        return self.secret
