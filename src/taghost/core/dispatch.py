"""Remote command dispatch over matched hosts.

Resolves an expression to host names, optionally narrows them with a
per-host filter command, and runs an ssh command line on every survivor
with bounded parallelism. Output lines are prefixed "host:N:" and, on a
terminal, colored per host.
"""

import logging
import os
import shlex
import subprocess
import sys
import threading
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Protocol, TextIO

import click

from ..constants import DEFAULT_HOST_COLOR, DEFAULT_SSH_COMMAND, HOST_COLORS, ColorMode, ExitCode
from ..exceptions import AmbiguousMatchError, CommandExecutionError, ConfigError, NoMatchError
from ..utils.parallel import parallel_map
from .expression import ExpressionEvaluator
from .projection import FieldProjector, QueryContext

logger = logging.getLogger(__name__)

SHELL = "/bin/sh"


@dataclass
class SshSettings:
    """Options that shape the ssh command line and the dispatch itself."""

    options: list[str] = field(default_factory=list)
    identity_file: str | None = None
    forward_agent: bool = False
    port: int | None = None
    user: str | None = None
    verbose: bool = False
    filter_command: str | None = None
    max_parallelism: int | None = None
    color: ColorMode = ColorMode.AUTO
    index: int | None = None
    dynamic_port_forward: str | None = None
    port_forward: str | None = None
    ssh_command: str = DEFAULT_SSH_COMMAND
    infile: str | None = None

    def __post_init__(self) -> None:
        try:
            self.color = ColorMode(self.color)
        except ValueError as e:
            raise ConfigError(f"invalid color mode: {self.color!r}") from e
        if self.max_parallelism is not None and self.max_parallelism < 1:
            raise ConfigError(f"max parallelism must be positive: {self.max_parallelism}")
        if self.index is not None and self.index < 0:
            raise ConfigError(f"index must not be negative: {self.index}")


def build_command_options(settings: SshSettings) -> list[str]:
    """ssh flags derived from settings."""
    arguments: list[str] = []
    if settings.forward_agent:
        arguments.append("-A")
    if settings.identity_file:
        arguments += ["-i", settings.identity_file]
    if settings.user:
        arguments += ["-l", settings.user]
    for option in settings.options:
        arguments += ["-o", option]
    if settings.port:
        arguments += ["-p", str(settings.port)]
    if settings.verbose:
        arguments.append("-v")
    if settings.dynamic_port_forward:
        arguments += ["-D", settings.dynamic_port_forward]
    if settings.port_forward:
        arguments += ["-L", settings.port_forward]
    return arguments


def build_command_line(host: str, command: str | None, settings: SshSettings) -> str:
    """Shell-quoted ssh command line for host.

    Example:
        >>> build_command_line("web-1", "uptime", SshSettings(user="deploy"))
        'ssh -l deploy web-1 -- uptime'
    """
    cmdline = [*shlex.split(settings.ssh_command), *build_command_options(settings), host]
    if command:
        cmdline += ["--", command]
    return shlex.join(cmdline)


# =============================================================================
# PROCESS LAUNCHERS
# =============================================================================


class ProcessLauncher(Protocol):
    """Runs a single command line in the foreground."""

    def launch(self, cmdline: str) -> int: ...


class ExecLauncher:
    """Replaces the current process with the command.

    Does not return on success.
    """

    def launch(self, cmdline: str) -> int:
        try:
            os.execvp(SHELL, [SHELL, "-c", cmdline])
        except OSError as e:
            raise CommandExecutionError(
                f"exec failed: {e}", exit_code=ExitCode.EXEC_FAILED
            ) from e
        return ExitCode.EXEC_FAILED


class SpawnLauncher:
    """Runs the command as a child process and returns its exit status."""

    def launch(self, cmdline: str) -> int:
        try:
            completed = subprocess.run(cmdline, shell=True)
        except OSError as e:
            raise CommandExecutionError(
                f"failed to start: {e}", exit_code=ExitCode.EXEC_FAILED
            ) from e
        return completed.returncode


def default_launcher(replace_process: bool = True) -> ProcessLauncher:
    """Pick process replacement where the platform has it, spawning otherwise."""
    if replace_process and os.name == "posix" and hasattr(os, "execvp"):
        return ExecLauncher()
    return SpawnLauncher()


# =============================================================================
# DISPATCHERS
# =============================================================================


class Dispatcher:
    """Runs a command on every host an expression matches.

    Example:
        >>> dispatcher = Dispatcher(sync, projector, SimpleExpressionEvaluator(), SshSettings())
        >>> dispatcher.run("role:web", "uptime")
        web-1:0: 10:00:00 up 3 days, ...
        web-2:0: 10:00:00 up 9 days, ...
    """

    def __init__(
        self,
        context: QueryContext,
        projector: FieldProjector,
        evaluator: ExpressionEvaluator,
        settings: SshSettings | None = None,
        stdout: TextIO | None = None,
    ):
        self.context = context
        self.projector = projector
        self.evaluator = evaluator
        self.settings = settings or SshSettings()
        self.stdout = stdout
        self._output_lock = threading.Lock()

    # -- host selection -------------------------------------------------------

    def resolve(self, expression: str) -> list[str]:
        """Host names matching expression, in evaluator order."""
        expression = expression.strip() or "*"
        tree = self.evaluator.parse(expression)
        host_ids, _fields = self.evaluator.evaluate(tree, self.context)
        return self.projector.host_names(host_ids)

    def parallelism(self, hosts: list[str]) -> int:
        return self.settings.max_parallelism or max(len(hosts), 1)

    def filter_hosts(self, hosts: list[str]) -> list[str]:
        """Keep hosts on which the filter command succeeds, in original order."""
        filter_command = self.settings.filter_command
        if not filter_command:
            return hosts

        def check(host: str) -> bool:
            cmdline = self.build_command_line(host, filter_command)
            return self.exec_command(host, cmdline, output=False)

        results = parallel_map(check, hosts, max_workers=self.parallelism(hosts))
        filtered = [host for host, ok in zip(hosts, results) if ok]
        if filtered != hosts:
            removed = [host for host, ok in zip(hosts, results) if not ok]
            logger.info(f"filtered host(s): {removed!r}")
        return filtered

    def validate_hosts(self, hosts: list[str]) -> None:
        if not hosts:
            raise NoMatchError("no match found")

    def select_hosts(self, expression: str) -> list[str]:
        """Resolve, filter and validate."""
        hosts = self.filter_hosts(self.resolve(expression))
        self.validate_hosts(hosts)
        return hosts

    # -- execution --------------------------------------------------------------

    def build_command_line(self, host: str, command: str | None = None) -> str:
        return build_command_line(host, command, self.settings)

    def run(self, expression: str, command: str | None) -> list[bool]:
        """Run command on every matching host.

        Returns:
            Per-host success flags, in host order
        """
        return self.run_parallel(self.select_hosts(expression), command)

    def run_parallel(self, hosts: list[str], command: str | None) -> list[bool]:
        """Run command on hosts, at most parallelism(hosts) at a time."""
        jobs = list(enumerate(hosts))

        def run_one(job: tuple[int, str]) -> bool:
            index, host = job
            cmdline = self.build_command_line(host, command)
            return self.exec_command(host, cmdline, index=index)

        return parallel_map(run_one, jobs, max_workers=self.parallelism(hosts))

    def use_color(self) -> bool:
        if self.settings.color == ColorMode.ALWAYS:
            return True
        if self.settings.color == ColorMode.NEVER:
            return False
        stream = self.stdout or sys.stdout
        return stream.isatty()

    @staticmethod
    def host_color(index: int | None) -> str:
        if index is None:
            return DEFAULT_HOST_COLOR
        return HOST_COLORS[index % len(HOST_COLORS)]

    def write_line(
        self, identifier: str | None, lineno: int, line: str, color: str | None = None
    ) -> None:
        """Write one output line with its "identifier:lineno:" prefix."""
        prefix = f"{identifier}:{lineno}:" if identifier else ""
        if prefix and color:
            prefix = click.style(prefix, fg=color)
        # One write per line so lines from different hosts never mix
        with self._output_lock:
            click.echo(prefix + line, file=self.stdout, color=True if color else None)

    def open_input(self):
        """Standard input for a remote command: the infile, or nothing."""
        if self.settings.infile:
            return open(self.settings.infile, "rb")
        return nullcontext(subprocess.DEVNULL)

    def exec_command(
        self,
        identifier: str | None,
        cmdline: str,
        output: bool = True,
        index: int | None = None,
    ) -> bool:
        """Run cmdline through the shell, streaming labeled output.

        Args:
            identifier: Label for each output line (usually the host)
            cmdline: Shell command line
            output: Write stdout lines; False discards them
            index: Host position, picks the color

        Returns:
            True if the process exited successfully
        """
        logger.debug(f"execute: {cmdline}")
        color = self.host_color(index) if self.use_color() else None

        try:
            with self.open_input() as stdin:
                process = subprocess.Popen(
                    cmdline,
                    shell=True,
                    stdin=stdin,
                    stdout=subprocess.PIPE,
                    text=True,
                    errors="replace",
                )
        except OSError as e:
            logger.warning(f"failed to launch {cmdline}: {e}")
            return False

        with process:
            for lineno, line in enumerate(process.stdout):
                if output:
                    self.write_line(identifier, lineno, line.rstrip("\n"), color)

        if process.returncode != 0:
            logger.debug(f"{identifier}: exited with status {process.returncode}")
        return process.returncode == 0


class SingleHostDispatcher(Dispatcher):
    """Runs a command in the foreground on exactly one matching host."""

    def __init__(self, *args, launcher: ProcessLauncher | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.launcher = launcher or default_launcher()

    def filter_hosts(self, hosts: list[str]) -> list[str]:
        hosts = super().filter_hosts(hosts)
        index = self.settings.index
        if index is not None and index < len(hosts):
            return [hosts[index]]
        return hosts

    def validate_hosts(self, hosts: list[str]) -> None:
        super().validate_hosts(hosts)
        if len(hosts) != 1:
            candidates = list(enumerate(hosts))
            logger.error(f"found {len(candidates)} candidates.")
            raise AmbiguousMatchError(f"found {len(candidates)} candidates", candidates)

    def launch(self, expression: str, command: str | None = None) -> int:
        """Launch command on the single matching host.

        Returns:
            Exit status of the command (only when the launcher returns)
        """
        return self.run_single(self.select_hosts(expression)[0], command)

    def run_single(self, host: str, command: str | None = None) -> int:
        """Run command on host in the foreground through the launcher."""
        cmdline = self.build_command_line(host, command)
        logger.debug(f"execute: {cmdline}")
        return self.launcher.launch(cmdline)
