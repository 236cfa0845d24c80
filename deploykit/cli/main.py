"""Main CLI entrypoint for deploykit."""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click

from ..config import load_settings, Settings
from ..errors import DeployKitError
from ..events import read_events, tail_events
from ..pipelines import get_pipeline, PipelineRunner, PIPELINES, RunResult
from ..render import render_jenkinsfile, render_workflow
from ..state import latest_run, read_run_json, run_exists
from ..status import derive_status, last_error
from ..steps import render_unit
from ..triggers import Trigger, from_github_env, from_payload

VARIANTS = click.Choice(sorted(PIPELINES))


@click.group()
@click.option('--config', 'config_path', help='Path to deploykit.yml')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def main(ctx, config_path, verbose):
    """deploykit - checkout, build, test and deploy a Python web app."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path


def _settings(ctx) -> Settings:
    try:
        return load_settings(ctx.obj.get('config_path'))
    except DeployKitError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)


def _json_output(data: Dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=None))


def _resolve_trigger(settings: Settings, event: Optional[str], ref: Optional[str],
                     base_ref: Optional[str], event_file: Optional[str]) -> Trigger:
    if ref:
        return Trigger(event=event or "push", ref=ref, base_ref=base_ref)
    if event_file:
        return from_payload(event or "push", json.loads(Path(event_file).read_text()))
    if os.environ.get("GITHUB_REF"):
        return from_github_env()
    return Trigger(event=event or "push", ref=settings.branch, base_ref=base_ref)


def _print_line(line: str) -> None:
    click.echo(f"  {line}")


def _report(result: RunResult, output_json: bool) -> None:
    if output_json:
        _json_output({
            'run_id': result.run_id,
            'variant': result.variant,
            'outcome': result.outcome,
            'jobs': {
                job.name: {
                    'status': job.status.value,
                    'stages': {s.name: s.status.value for s in job.stages},
                } for job in result.jobs
            },
        })
        return

    colors = {'success': 'green', 'unstable': 'yellow', 'skipped': 'blue', 'failed': 'red'}
    click.echo(f"Run {result.run_id} ({result.variant}): "
               f"{click.style(result.outcome, fg=colors.get(result.outcome, 'white'))}")
    for job in result.jobs:
        click.echo(f"  job {job.name}: {job.status.value}")
        for stage in job.stages:
            line = f"    {stage.name}: {stage.status.value}"
            if stage.last_state:
                line += f" (reached {stage.last_state.value})"
            click.echo(line)
            for warning in stage.warnings:
                click.echo(f"      ⚠️  {warning}")
            if stage.error:
                click.echo(f"      ❌ {stage.error}")


def _trigger_options(f):
    f = click.option('--event', type=click.Choice(['push', 'pull_request']), help='Triggering event')(f)
    f = click.option('--ref', help='Git ref or branch that triggered the run')(f)
    f = click.option('--base-ref', help='Target branch of a pull request')(f)
    f = click.option('--event-file', type=click.Path(exists=True), help='Webhook payload JSON')(f)
    return f


@main.command()
@click.argument('variant', type=VARIANTS)
@_trigger_options
@click.option('--workdir', help='Local working copy directory (defaults to APP_DIR)')
@click.option('--quiet', is_flag=True, help='Do not echo command output')
@click.option('--json', 'output_json', is_flag=True, help='Output machine-readable JSON')
@click.pass_context
def run(ctx, variant, event, ref, base_ref, event_file, workdir, quiet, output_json):
    """Run every stage of a pipeline variant."""
    settings = _settings(ctx)
    try:
        trigger = _resolve_trigger(settings, event, ref, base_ref, event_file)
    except ValueError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    runner = PipelineRunner(
        get_pipeline(variant, settings), settings, workdir=workdir,
        on_line=None if (quiet or output_json) else _print_line,
    )
    result = runner.run(trigger)
    _report(result, output_json)
    sys.exit(0 if result.succeeded else 1)


@main.command()
@click.argument('name', type=click.Choice(['checkout', 'build', 'test', 'deploy']))
@click.option('--variant', type=VARIANTS, required=True, help='Pipeline variant the stage belongs to')
@_trigger_options
@click.option('--workdir', help='Local working copy directory (defaults to APP_DIR)')
@click.option('--quiet', is_flag=True, help='Do not echo command output')
@click.option('--json', 'output_json', is_flag=True, help='Output machine-readable JSON')
@click.pass_context
def stage(ctx, name, variant, event, ref, base_ref, event_file, workdir, quiet, output_json):
    """Run one stage. Exits non-zero when the stage fails, even if its
    pipeline would continue; the CI configuration decides what that means."""
    settings = _settings(ctx)
    try:
        trigger = _resolve_trigger(settings, event, ref, base_ref, event_file)
        runner = PipelineRunner(
            get_pipeline(variant, settings), settings, workdir=workdir,
            on_line=None if (quiet or output_json) else _print_line,
        )
        result = runner.run_stage(name, trigger)
    except ValueError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    _report(result, output_json)
    sys.exit(0 if result.outcome == 'success' else 1)


@main.command()
@click.argument('variant', type=VARIANTS)
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write to file instead of stdout')
@click.option('--env', 'env_pairs', multiple=True, help='Jenkins environment KEY=VALUE override')
@click.option('--python-version', default='3.11', help='Python version for GitHub Actions')
@click.pass_context
def render(ctx, variant, output, env_pairs, python_version):
    """Render the Jenkinsfile or GitHub Actions workflow for a variant."""
    settings = _settings(ctx)
    pipeline = get_pipeline(variant, settings)

    if variant == 'jenkins':
        environment = {}
        for pair in env_pairs:
            if '=' not in pair:
                click.echo(f"❌ Invalid --env value: {pair} (expected KEY=VALUE)", err=True)
                sys.exit(1)
            key, value = pair.split('=', 1)
            environment[key] = value
        text = render_jenkinsfile(pipeline, settings, environment)
    else:
        text = render_workflow(pipeline, settings, python_version)

    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        Path(output).write_text(text)
        click.echo(f"✅ Wrote {output}")
    else:
        click.echo(text, nl=False)


@main.command()
@click.option('--user', required=True, help='User the service runs as')
@click.option('--working-dir', required=True, help='Absolute path of the working copy on the host')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write to file instead of stdout')
@click.pass_context
def unit(ctx, user, working_dir, output):
    """Render a systemd unit for the application."""
    settings = _settings(ctx)
    text = render_unit(working_dir, user, entrypoint=settings.entrypoint, venv_dir=settings.venv_dir)
    if output:
        Path(output).write_text(text)
        click.echo(f"✅ Wrote {output} (install as /etc/systemd/system/{settings.service_unit})")
    else:
        click.echo(text, nl=False)


def _resolve_run_id(run_id: str, output_json: bool) -> str:
    if run_id == 'latest':
        run_id = latest_run() or run_id
    if not run_exists(run_id):
        error_msg = f"Run {run_id} not found"
        if output_json:
            _json_output({'error': error_msg})
        else:
            click.echo(f"❌ {error_msg}", err=True)
        sys.exit(2)
    return run_id


@main.command()
@click.argument('run_id', default='latest')
@click.option('--json', 'output_json', is_flag=True, help='Output machine-readable JSON')
def status(run_id, output_json):
    """Show the outcome of a run (default: the latest)."""
    run_id = _resolve_run_id(run_id, output_json)
    info = derive_status(run_id, read_events(run_id), read_run_json(run_id))

    if output_json:
        _json_output(info)
        return

    click.echo(f"📊 Run: {run_id} ({info['variant']})")
    click.echo(f"Started: {info['created_at']}")
    click.echo(f"Outcome: {info['outcome']}")
    for name, stage_status in info['stages'].items():
        click.echo(f"  {name}: {stage_status}")
    if info['last_state']:
        click.echo(f"Deploy reached: {info['last_state']}")
    for warning in info['warnings']:
        click.echo(f"⚠️  {warning}")
    error = last_error(info)
    if error:
        click.echo(f"❌ {error['stage']}: {error['reason']}")


@main.command()
@click.argument('run_id', default='latest')
@click.option('--follow', is_flag=True, help='Follow events until the run finishes')
@click.option('--stage', 'stage_filter', help='Only show events for this stage')
@click.option('--json', 'output_json', is_flag=True, help='Output machine-readable JSON')
def logs(run_id, follow, stage_filter, output_json):
    """Show the events of a run (default: the latest)."""
    run_id = _resolve_run_id(run_id, output_json)
    try:
        for event in tail_events(run_id, follow=follow):
            data = event.get('data', {})
            if stage_filter and data.get('stage') != stage_filter:
                continue
            if output_json:
                _json_output(event)
            else:
                _print_event_human(event)
    except KeyboardInterrupt:
        click.echo("\n👋 Stopped following logs")


def _print_event_human(event: Dict[str, Any]) -> None:
    event_type = event.get('type', 'UNKNOWN')
    data = event.get('data', {})
    time_str = event.get('ts', '')[11:19]

    if event_type == 'STAGE_LINE':
        message = data.get('line', '')
    else:
        message = ', '.join(f"{k}={v}" for k, v in data.items() if k != 'last_lines')

    if event_type in ('ERROR', 'SMOKE_FAIL'):
        color = 'red'
    elif event_type in ('WARNING', 'STAGE_UNSTABLE', 'JOB_SKIPPED', 'TRIGGER_SKIPPED'):
        color = 'yellow'
    elif event_type in ('RUN_DONE', 'SMOKE_OK', 'DEPLOY_STATE'):
        color = 'green'
    elif event_type == 'STAGE_LINE':
        color = 'white'
    else:
        color = 'blue'

    click.echo(f"[{time_str}] {click.style(event_type, fg=color)}: {message}")


if __name__ == '__main__':
    main()
