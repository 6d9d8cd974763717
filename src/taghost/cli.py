"""taghost CLI entry point.

Commands:
    search    Show hosts matching a tag expression
    pssh      Run a command on every matching host in parallel
    ssh       Open ssh (or run a command) on exactly one matching host
    reload    Rebuild the host/tag cache
    config    View/edit configuration
"""

import json
import logging
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from taghost import __version__
from taghost.constants import APP_NAME, DEFAULT_SSH_COMMAND, ColorMode, ExitCode
from taghost.core.dispatch import Dispatcher, SingleHostDispatcher, SshSettings, default_launcher
from taghost.core.expression import SimpleExpressionEvaluator
from taghost.core.inventory import DatadogClient, InventoryFetcher
from taghost.core.projection import FieldProjector
from taghost.core.sync import CacheSynchronizer
from taghost.exceptions import (
    AmbiguousMatchError,
    CommandExecutionError,
    NoMatchError,
    TaghostError,
)
from taghost.utils.config import (
    Settings,
    get_config_path,
    get_value,
    load_config,
    save_config,
    set_value,
)

console = Console()
err_console = Console(stderr=True)


def _setup_logging(debug: bool) -> None:
    """Send package logs to stderr through rich."""
    logger = logging.getLogger(APP_NAME)
    logger.handlers = [
        RichHandler(console=err_console, show_time=False, show_path=False)
    ]
    logger.setLevel(logging.DEBUG if debug else logging.INFO)


def _settings(ctx: click.Context, **overrides: Any) -> Settings:
    """Build settings from the config file, global flags and command flags."""
    values = dict(ctx.obj.get("overrides", {}))
    values.update(overrides)
    return Settings.from_config(load_config(), **values)


@contextmanager
def _cache(settings: Settings) -> Iterator[CacheSynchronizer]:
    """Synchronizer with an inventory client when credentials are present."""
    fetcher = None
    if settings.api_key and settings.application_key:
        client = DatadogClient(
            settings.endpoint,
            settings.api_key,
            settings.application_key,
            timeout=settings.timeout,
        )
        fetcher = InventoryFetcher(client)
    try:
        with CacheSynchronizer(settings, fetcher) as sync:
            yield sync
    finally:
        if fetcher is not None:
            fetcher.close()


def _fail(message: str, code: int = ExitCode.GENERAL_ERROR) -> None:
    err_console.print(f"[red]{message}[/red]")
    sys.exit(code)


def _print_candidates(candidates: list[tuple[int, str]]) -> None:
    table = Table(title="Candidates")
    table.add_column("index", justify="right", style="cyan")
    table.add_column("host")
    for index, host in candidates:
        table.add_row(str(index), host)
    err_console.print(table)


@click.group()
@click.version_option(version=__version__, prog_name=APP_NAME)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--confdir", type=click.Path(file_okay=False), help="Cache directory")
@click.option("--expiry", type=click.IntRange(min=0), help="Seconds the cache stays fresh")
@click.option("--force", is_flag=True, help="Rebuild the cache even if it is fresh")
@click.option("--offline", is_flag=True, help="Never contact the API; use the cache as is")
@click.option("--endpoint", help="API endpoint URL")
@click.pass_context
def main(
    ctx: click.Context,
    debug: bool,
    confdir: str | None,
    expiry: int | None,
    force: bool,
    offline: bool,
    endpoint: str | None,
) -> None:
    """taghost - Select hosts by tag and run commands on them."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["overrides"] = {
        "confdir": confdir,
        "expiry": expiry,
        "force": force or None,
        "offline": offline or None,
        "endpoint": endpoint,
    }
    _setup_logging(debug)


# ============================================================================
# SEARCH COMMAND
# ============================================================================


@main.command()
@click.argument("expression", nargs=-1)
@click.option("-l", "--listing", is_flag=True, help="Show every tag of the matched hosts")
@click.option("-t", "--tag", "tags", multiple=True, help="Tag to show as a column")
@click.option("--primary-tag", help="Tag shown first instead of the host name")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
@click.pass_context
def search(
    ctx: click.Context,
    expression: tuple,
    listing: bool,
    tags: tuple,
    primary_tag: str | None,
    as_json: bool,
) -> None:
    """Show hosts matching EXPRESSION.

    Examples:

        taghost search role:web

        taghost search -l env:prod
    """
    try:
        settings = _settings(
            ctx,
            listing=listing or None,
            tags=list(tags) or None,
            primary_tag=primary_tag,
        )
        with _cache(settings) as sync:
            evaluator = SimpleExpressionEvaluator()
            tree = evaluator.parse(" ".join(expression))
            host_ids, referenced = evaluator.evaluate(tree, sync)
            if not host_ids:
                _fail("no match found", ExitCode.NO_MATCH)

            projector = FieldProjector(sync, settings)
            rows, fields = projector.project(host_ids, projector.search_fields(referenced))

        if as_json:
            console.print_json(json.dumps([dict(zip(fields, row)) for row in rows]))
            return

        table = Table()
        for field in fields:
            table.add_column(field, style="cyan" if field == fields[0] else None)
        for row in rows:
            table.add_row(*(value or "" for value in row))
        console.print(table)

    except TaghostError as e:
        _fail(f"Error: {e}")
    except KeyboardInterrupt:
        _fail("\nInterrupted", ExitCode.KEYBOARD_INTERRUPT)


# ============================================================================
# SSH COMMANDS
# ============================================================================


def _ssh_options(func: Callable) -> Callable:
    """Options shared by ssh and pssh."""
    options = [
        click.option(
            "-o",
            "ssh_options",
            multiple=True,
            help="Pass this option to ssh. May be given multiple times",
        ),
        click.option("-i", "identity_file", help="SSH identity file path"),
        click.option("-A", "forward_agent", is_flag=True, help="Enable agent forwarding"),
        click.option("-p", "port", type=click.IntRange(1, 65535), help="Port of the remote host"),
        click.option("-u", "user", help="SSH login user name"),
        click.option("-v", "--verbose", is_flag=True, help="Enable verbose mode"),
        click.option("--filter", "filter_command", help="Command to filter search result"),
        click.option("-P", "max_parallelism", type=click.IntRange(min=1), help="Max parallelism"),
        click.option(
            "--color",
            "--colour",
            "color",
            type=click.Choice([mode.value for mode in ColorMode]),
            default=ColorMode.AUTO.value,
            help="When to colorize output",
        ),
        click.option(
            "--ssh-command",
            envvar="TAGHOST_SSH_COMMAND",
            default=DEFAULT_SSH_COMMAND,
            show_default=True,
            help="ssh executable (and fixed arguments)",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _ssh_settings(**kwargs: Any) -> SshSettings:
    kwargs["options"] = list(kwargs.pop("ssh_options", ()))
    return SshSettings(**kwargs)


@main.command()
@click.argument("expression", nargs=-1)
@click.option("-c", "--command", "remote_command", required=True, help="Command to run remotely")
@click.option(
    "--infile",
    type=click.Path(exists=True, dir_okay=False),
    help="Feed this file to each remote command on stdin",
)
@_ssh_options
@click.pass_context
def pssh(
    ctx: click.Context,
    expression: tuple,
    remote_command: str,
    infile: str | None,
    **ssh_kwargs: Any,
) -> None:
    """Run a command on every host matching EXPRESSION.

    Each output line is prefixed with the host name and a line number.

    Examples:

        taghost pssh role:web -c uptime

        taghost pssh env:prod --filter 'test -d /srv/app' -c 'ls /srv/app' -P 8
    """
    try:
        settings = _settings(ctx)
        ssh_settings = _ssh_settings(**ssh_kwargs, infile=infile)
        with _cache(settings) as sync:
            dispatcher = Dispatcher(
                sync, FieldProjector(sync, settings), SimpleExpressionEvaluator(), ssh_settings
            )
            hosts = dispatcher.select_hosts(" ".join(expression))
        dispatcher.run_parallel(hosts, remote_command)

    except NoMatchError as e:
        _fail(str(e), ExitCode.NO_MATCH)
    except TaghostError as e:
        _fail(f"Error: {e}")
    except KeyboardInterrupt:
        _fail("\nInterrupted", ExitCode.KEYBOARD_INTERRUPT)


@main.command()
@click.argument("expression", nargs=-1)
@click.option("-c", "--command", "remote_command", help="Command to run instead of a login shell")
@click.option(
    "-n",
    "--index",
    type=click.IntRange(min=0),
    help="Use this index of host if multiple servers are found",
)
@click.option("-D", "dynamic_port_forward", help="Local dynamic port forwarding bind address")
@click.option("-L", "port_forward", help="Local port forwarding specification")
@click.option("--spawn", is_flag=True, help="Run ssh as a child process instead of replacing taghost")
@_ssh_options
@click.pass_context
def ssh(
    ctx: click.Context,
    expression: tuple,
    remote_command: str | None,
    spawn: bool,
    **ssh_kwargs: Any,
) -> None:
    """Connect to the single host matching EXPRESSION.

    If several hosts match, they are listed with their index; pick one
    with --index.

    Examples:

        taghost ssh role:db

        taghost ssh role:web -n 2 -L 8080:localhost:80
    """
    try:
        settings = _settings(ctx)
        ssh_settings = _ssh_settings(**ssh_kwargs)
        with _cache(settings) as sync:
            dispatcher = SingleHostDispatcher(
                sync,
                FieldProjector(sync, settings),
                SimpleExpressionEvaluator(),
                ssh_settings,
                launcher=default_launcher(replace_process=not spawn),
            )
            host = dispatcher.select_hosts(" ".join(expression))[0]
        sys.exit(dispatcher.run_single(host, remote_command))

    except AmbiguousMatchError as e:
        _print_candidates(e.candidates)
        _fail(str(e), ExitCode.NO_MATCH)
    except NoMatchError as e:
        _fail(str(e), ExitCode.NO_MATCH)
    except CommandExecutionError as e:
        _fail(f"Error: {e}", e.exit_code or ExitCode.EXEC_FAILED)
    except TaghostError as e:
        _fail(f"Error: {e}")
    except KeyboardInterrupt:
        _fail("\nInterrupted", ExitCode.KEYBOARD_INTERRUPT)


# ============================================================================
# RELOAD COMMAND
# ============================================================================


@main.command()
@click.pass_context
def reload(ctx: click.Context) -> None:
    """Rebuild the host/tag cache from the API."""
    try:
        settings = _settings(ctx)
        with _cache(settings) as sync:
            sync.reload(force=True)
            rebuilt = not settings.offline
            hosts = sync.execute("SELECT COUNT(*) FROM hosts;")[0][0]
            tags = sync.execute("SELECT COUNT(*) FROM tags;")[0][0]

        verb = "Rebuilt" if rebuilt else "Reused"
        console.print(f"[green]{verb} cache: {hosts} host(s), {tags} tag(s)[/green]")
        console.print(f"[dim]{settings.persistent_db}[/dim]")

    except TaghostError as e:
        _fail(f"Error: {e}")
    except KeyboardInterrupt:
        _fail("\nInterrupted", ExitCode.KEYBOARD_INTERRUPT)


# ============================================================================
# CONFIG COMMAND
# ============================================================================


@main.group()
def config() -> None:
    """View and edit configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Show current configuration."""
    cfg = load_config()
    console.print(f"[dim]Config file: {get_config_path()}[/dim]\n")
    console.print_json(json.dumps(cfg, indent=2))


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str) -> None:
    """Set a configuration value.

    KEY is a dot-separated path (e.g., general.expiry)
    VALUE is the new value
    """
    cfg = load_config()

    # Try to parse as JSON for complex values
    try:
        parsed_value = json.loads(value)
    except json.JSONDecodeError:
        parsed_value = value

    set_value(cfg, key, parsed_value)
    save_config(cfg)
    console.print(f"[green]Set {key} = {parsed_value}[/green]")


@config.command("get")
@click.argument("key")
def config_get(key: str) -> None:
    """Get a configuration value.

    KEY is a dot-separated path (e.g., general.expiry)
    """
    cfg = load_config()
    value = get_value(cfg, key)

    if value is None:
        console.print(f"[yellow]Key '{key}' not found[/yellow]")
        sys.exit(1)

    console.print(f"{key} = {json.dumps(value)}")


if __name__ == "__main__":
    main()
