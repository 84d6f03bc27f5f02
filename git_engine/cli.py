"""Click-based CLI entrypoint for git-engine.

A thin front end over ``CliGitProvider``: every command prints JSON on
stdout. Failures print the ErrorRecord as JSON on stderr and exit 1.

Examples::

    git-engine workdir set /path/to/repo --session dev
    git-engine run status --session dev
    git-engine run commit -o message="Fix parser" --cwd /path/to/repo
    git-engine run branch --options-json '{"action": "create", "name": "feature"}'
"""

from __future__ import annotations

import json
import os
import sys
from typing import Any, Optional

import click

from git_engine.config import load_engine_config
from git_engine.errors import ConfigError, GitEngineError
from git_engine.logging_config import setup_logging
from git_engine.models import GitOperation, OperationContext, RequestContext
from git_engine.provider import CliGitProvider


def _emit(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def _fail(error: GitEngineError) -> None:
    click.echo(json.dumps({"error": error.record.to_dict()}, indent=2, default=str), err=True)
    sys.exit(1)


def _parse_option_pairs(pairs: tuple[str, ...]) -> dict[str, Any]:
    """Parse ``key=value`` pairs; values are JSON when they parse as JSON."""
    options: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--option")
        try:
            options[key] = json.loads(raw)
        except ValueError:
            options[key] = raw
    return options


class EngineState:
    """Lazily built provider shared by the subcommands of one invocation."""

    def __init__(self, config_path: Optional[str], tenant: Optional[str], session: str):
        self.config_path = config_path
        self.tenant = tenant
        self.session = session
        self._provider: Optional[CliGitProvider] = None

    @property
    def provider(self) -> CliGitProvider:
        if self._provider is None:
            try:
                config = load_engine_config(self.config_path)
            except ConfigError as e:
                raise click.ClickException(str(e))
            self._provider = CliGitProvider(config)
        return self._provider

    @property
    def tenant_id(self) -> str:
        return self.tenant or self.provider.config.default_tenant

    def context(self, working_directory: Optional[str] = None) -> OperationContext:
        return OperationContext(
            working_directory=working_directory,
            request_context=RequestContext(tenant_id=self.tenant_id, session_id=self.session),
        )


pass_state = click.make_pass_decorator(EngineState)


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="YAML config file (default: $GIT_ENGINE_CONFIG).")
@click.option("--tenant", default=None, help="Tenant id (default: configured default tenant).")
@click.option("--session", default="default", show_default=True, help="Session id.")
@click.option("--log-level", default=None, help="Log level (default: $LOG_LEVEL or INFO).")
@click.option("--log-format", type=click.Choice(["json", "text"]), default=None,
              help="Log format (default: $LOG_FORMAT or json).")
@click.version_option(package_name="git-engine", message="%(version)s")
@click.pass_context
def cli(ctx: click.Context, config_path, tenant, session, log_level, log_format) -> None:
    """Run git operations with validated arguments and structured output."""
    setup_logging(level=log_level or os.environ.get("LOG_LEVEL", "WARNING"), format_type=log_format)
    ctx.obj = EngineState(config_path, tenant, session)


@cli.command("run")
@click.argument("operation", type=click.Choice([op.value for op in GitOperation]))
@click.option("-o", "--option", "option_pairs", multiple=True, metavar="KEY=VALUE",
              help="Operation option; repeatable. Values are parsed as JSON when possible.")
@click.option("--options-json", default=None, help="All options as a JSON object.")
@click.option("--cwd", "working_directory", default=None,
              help="Working directory (default: the session's stored directory).")
@pass_state
def run_cmd(state: EngineState, operation: str, option_pairs, options_json, working_directory) -> None:
    """Run OPERATION and print its result."""
    options: dict[str, Any] = {}
    if options_json:
        try:
            loaded = json.loads(options_json)
        except ValueError as e:
            raise click.BadParameter(f"invalid JSON: {e}", param_hint="--options-json")
        if not isinstance(loaded, dict):
            raise click.BadParameter("must be a JSON object", param_hint="--options-json")
        options.update(loaded)
    options.update(_parse_option_pairs(option_pairs))

    cwd = os.path.abspath(working_directory) if working_directory else None
    try:
        result = state.provider.execute(operation, options, state.context(cwd))
    except GitEngineError as e:
        _fail(e)
    _emit(result.model_dump(mode="json"))


@cli.command("capabilities")
@pass_state
def capabilities_cmd(state: EngineState) -> None:
    """Print supported operations and their options."""
    _emit(state.provider.capabilities().model_dump(mode="json"))


@cli.command("health")
@pass_state
def health_cmd(state: EngineState) -> None:
    """Check that git can be run; exits 1 when unhealthy."""
    status = state.provider.health_check()
    _emit(status.model_dump(mode="json"))
    if not status.healthy:
        sys.exit(1)


@cli.group("workdir")
def workdir() -> None:
    """Manage the session's working directory."""


@workdir.command("set")
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.option("--ttl", type=int, default=None, help="Seconds until expiry (default: configured TTL).")
@pass_state
def workdir_set(state: EngineState, path: str, ttl: Optional[int]) -> None:
    """Set the working directory for the session."""
    store = state.provider.store
    try:
        if ttl is None:
            entry = store.set(state.tenant_id, state.session, os.path.abspath(path))
        else:
            entry = store.set(state.tenant_id, state.session, os.path.abspath(path), ttl=ttl)
    except GitEngineError as e:
        _fail(e)
    _emit(entry.to_dict())


@workdir.command("get")
@pass_state
def workdir_get(state: EngineState) -> None:
    """Print the session's working directory (null when unset)."""
    try:
        path = state.provider.store.get(state.tenant_id, state.session)
    except GitEngineError as e:
        _fail(e)
    _emit({"session_id": state.session, "path": path})


@workdir.command("clear")
@pass_state
def workdir_clear(state: EngineState) -> None:
    """Forget the session's working directory."""
    try:
        removed = state.provider.store.clear(state.tenant_id, state.session)
    except GitEngineError as e:
        _fail(e)
    _emit({"session_id": state.session, "cleared": removed})


@workdir.command("list")
@click.option("--prefix", default="", help="Only sessions starting with this prefix.")
@click.option("--limit", type=int, default=None)
@click.option("--cursor", default=None, help="Resume after this key.")
@pass_state
def workdir_list(state: EngineState, prefix: str, limit: Optional[int], cursor: Optional[str]) -> None:
    """List sessions that have a working directory."""
    try:
        page = state.provider.store.list(state.tenant_id, prefix, limit=limit, cursor=cursor)
    except GitEngineError as e:
        _fail(e)
    _emit({"keys": page.keys, "next_cursor": page.next_cursor})


def main() -> None:
    """Console-script entrypoint."""
    cli()


if __name__ == "__main__":
    main()
