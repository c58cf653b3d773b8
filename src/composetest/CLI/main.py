"""
Command Line Interface for composetest.
"""
import logging
import os
import subprocess
import warnings
from pathlib import Path

import click

from ..exceptions import ComposeError, StackTeardownWarning
from ..MANAGERS.compose_service import ComposeService
from ..MANAGERS.lifecycle_coordinator import LifecycleCoordinator
from ..MANAGERS.log_capture import write_captured_logs
from ..MANAGERS.state_handoff import STACK_SPEC_ENV, STATE_FILE_ENV, StateHandoff, read_stack_state
from ..MODELS.settings import EngineSettings
from ..MODELS.stack_config import LogsSpec, StackSpec
from ..RUNNERS.process_invoker import ProcessInvoker
from ..UTILS.project_name import sanitize_project_name

logger = logging.getLogger(__name__)


def wait_options(command):
    """Readiness options shared by `up` and `run`."""
    command = click.option('--wait-healthy', multiple=True, help='Service that must become healthy')(command)
    command = click.option('--wait-running', multiple=True, help='Service that must be running')(command)
    command = click.option('--timeout', type=float, default=None, help='Seconds to wait for readiness')(command)
    command = click.option('--poll', type=float, default=None, help='Seconds between readiness checks')(command)
    return command


@click.group()
@click.option('--file', '-f', 'files', multiple=True, default=('docker-compose.yml',), help='Compose file path')
@click.option('--project-name', '-p', default=None, help='Compose project name')
@click.option('--env-file', 'env_files', multiple=True, help='Env file used for variable substitution')
@click.option('--stack-name', '-s', default=None, help='Stack name (default: project name or directory name)')
@click.option('--state-dir', default=None, help='Directory for stack state files')
@click.option('--log-level', default=None, help='Logging level')
@click.pass_context
def cli(ctx, files, project_name, env_files, stack_name, state_dir, log_level):
    """
    composetest - Docker Compose stacks for test runs.

    Starts a stack, waits until its services are ready, hands its state to
    the tests and tears it down again.
    """
    ctx.ensure_object(dict)
    settings = EngineSettings.from_env(state_dir=state_dir, log_level=log_level)
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    invoker = ctx.obj.get('invoker') or ProcessInvoker(default_timeout=settings.command_timeout_seconds)
    service = ComposeService(invoker,
                             compose_command=settings.compose_command,
                             command_timeout=settings.command_timeout_seconds,
                             clock=ctx.obj.get('clock'))
    handoff = StateHandoff(settings.state_dir)
    ctx.obj.update(
        settings=settings,
        files=list(files),
        project_name=project_name,
        env_files=list(env_files),
        stack_name=stack_name or project_name or sanitize_project_name(Path.cwd().name),
        service=service,
        handoff=handoff,
        coordinator=LifecycleCoordinator(service, handoff, clock=service.clock),
    )


def _stack_spec(ctx, wait_healthy=(), wait_running=(), timeout=None, poll=None, **options) -> StackSpec:
    settings = ctx.obj['settings']
    try:
        return StackSpec.build(
            ctx.obj['stack_name'],
            ctx.obj['files'],
            project_name=ctx.obj['project_name'],
            env_files=ctx.obj['env_files'],
            wait_for_healthy=wait_healthy,
            wait_for_running=wait_running,
            timeout_seconds=timeout or settings.default_timeout_seconds,
            poll_seconds=poll or settings.default_poll_seconds,
            **options,
        )
    except ComposeError as e:
        raise click.ClickException(str(e))


def _project_name(ctx) -> str:
    """Project of the running stack: from its state file if there is one."""
    state_file = ctx.obj['handoff'].path_for(ctx.obj['stack_name'])
    if state_file.is_file():
        try:
            return read_stack_state(state_file).project_name
        except ComposeError as e:
            logger.warning("Ignoring unreadable state file: %s", e)
    return sanitize_project_name(ctx.obj['project_name'] or ctx.obj['stack_name'])


@cli.command()
@wait_options
@click.pass_context
def up(ctx, wait_healthy, wait_running, timeout, poll):
    """Start the stack, wait for its services and write its state file."""
    spec = _stack_spec(ctx, wait_healthy, wait_running, timeout, poll, unique_project=False)
    scope = ctx.obj['coordinator'].create_scope(spec)
    try:
        state = scope.start()
    except ComposeError as e:
        raise click.ClickException(str(e))

    click.echo(f"Stack '{state.stack_name}' is ready (project {state.project_name}).")
    click.echo(f"State file: {scope.state_file}")


@cli.command()
@click.option('--logs-file', type=click.Path(dir_okay=False, path_type=Path), default=None,
              help='Write service logs to this file before stopping')
@click.option('--logs-service', multiple=True, help='Service whose logs are captured (default: all)')
@click.option('--logs-tail', type=int, default=100, help='Log lines per service')
@click.option('--keep-volumes', is_flag=True, help='Do not remove named volumes')
@click.pass_context
def down(ctx, logs_file, logs_service, logs_tail, keep_volumes):
    """Stop the stack and remove its containers."""
    logs = None
    if logs_file or logs_service:
        logs = LogsSpec(services=list(logs_service), tail_lines=logs_tail, output_file=logs_file)
    spec = _stack_spec(ctx, logs=logs, remove_volumes=not keep_volumes, unique_project=False)

    state_file = ctx.obj['handoff'].path_for(spec.stack_name)
    state = None
    if state_file.is_file():
        try:
            state = read_stack_state(state_file)
        except ComposeError as e:
            logger.warning("Ignoring unreadable state file: %s", e)
    scope = ctx.obj['coordinator'].resume_scope(spec, state)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", StackTeardownWarning)
        problems = scope.stop()

    for problem in problems:
        click.echo(f"Warning: {problem}", err=True)
    if state_file.is_file():
        state_file.unlink()
    click.echo(f"Stack '{spec.stack_name}' stopped.")


@cli.command()
@click.argument('services', nargs=-1)
@click.option('--tail', type=int, default=100, help='Log lines per service')
@click.option('--output', '-o', type=click.Path(dir_okay=False, path_type=Path), default=None,
              help='Write logs to this file instead of stdout')
@click.pass_context
def logs(ctx, services, tail, output):
    """Print the recent logs of the stack's services"""
    project_name = _project_name(ctx)
    spec = LogsSpec(services=list(services), tail_lines=tail, output_file=output)
    text = ctx.obj['service'].capture_logs(project_name, spec)
    if output:
        write_captured_logs(text, output, project_name)
        click.echo(f"Logs written to {output}")
    else:
        click.echo(text, nl=False)


@cli.command()
@click.pass_context
def ps(ctx):
    """List service status"""
    services = ctx.obj['service'].get_services(_project_name(ctx))
    if not services:
        click.echo("No services running.")
        return
    click.echo(f"{'SERVICE':20} {'STATE':12} PORTS")
    click.echo("-" * 50)
    for name, info in sorted(services.items()):
        ports = ", ".join(f"{p.host_port}->{p.container_port}/{p.protocol}" for p in info.ports)
        click.echo(f"{name:20} {info.state.value:12} {ports}")


@cli.command(context_settings={"ignore_unknown_options": True})
@click.option('--lifecycle', type=click.Choice(['class', 'method']), default='class',
              help='One stack for the whole command, or one per test')
@wait_options
@click.argument('command', nargs=-1, type=click.UNPROCESSED, required=True)
@click.pass_context
def run(ctx, lifecycle, wait_healthy, wait_running, timeout, poll, command):
    """
    Run COMMAND (usually pytest) against the stack.

    With --lifecycle class the stack is started once, COMPOSE_STATE_FILE is
    exported to COMMAND and the stack is stopped when it exits. With
    --lifecycle method the stack configuration is exported instead and the
    pytest plugin starts one stack per test.
    """
    spec = _stack_spec(ctx, wait_healthy, wait_running, timeout, poll, lifecycle=lifecycle)
    env = dict(os.environ)

    if lifecycle == 'method':
        spec_file = ctx.obj['settings'].state_dir / f"{spec.stack_name}-spec.json"
        env[STACK_SPEC_ENV] = str(spec.dump(spec_file))
        ctx.exit(_run_child(command, env))

    scope = ctx.obj['coordinator'].create_scope(spec, owner="run")
    try:
        scope.start()
    except ComposeError as e:
        raise click.ClickException(str(e))

    try:
        env[STATE_FILE_ENV] = str(scope.state_file)
        exit_code = _run_child(command, env)
    finally:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", StackTeardownWarning)
            problems = scope.stop()
        for problem in problems:
            click.echo(f"Warning: {problem}", err=True)
    ctx.exit(exit_code)


def _run_child(command, env) -> int:
    logger.info("Running: %s", " ".join(command))
    try:
        return subprocess.run(list(command), env=env).returncode
    except OSError as e:
        raise click.ClickException(f"cannot run {command[0]}: {e}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})

if __name__ == '__main__':
    main()
