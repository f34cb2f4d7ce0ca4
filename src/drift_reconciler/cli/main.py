"""Main CLI entry point."""

import signal
import sys
import threading
from typing import List, Optional

import boto3
import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from drift_reconciler.config.parser import Config, ConfigValidationError
from drift_reconciler.controller.models import CycleResult, CycleStatus
from drift_reconciler.controller.reconciler import ReconciliationController
from drift_reconciler.controller.scheduler import ReconciliationScheduler
from drift_reconciler.incidents.sinks import GitHubIssueSink, IssueSink
from drift_reconciler.incidents.tracker import IncidentTracker
from drift_reconciler.lock.manager import LockManager
from drift_reconciler.notifications.dispatcher import NotificationDispatcher
from drift_reconciler.notifications.sinks import ChatSink, DiscordWebhookSink, SlackWebhookSink
from drift_reconciler.planning.evaluator import PlanEvaluator
from drift_reconciler.planning.executor import SubprocessApplyExecutor, SubprocessPlanExecutor
from drift_reconciler.remediation.engine import RemediationEngine
from drift_reconciler.state.dynamodb import DynamoDBStateStore
from drift_reconciler.state.store import FileStateStore, InMemoryStateStore, StateStore
from drift_reconciler.utils.errors import ReconciliationError
from drift_reconciler.utils.logging import get_logger, setup_logging
from drift_reconciler.utils.retry import RetryStrategy

console = Console()
logger = get_logger(__name__)

STATUS_STYLES = {
    'clean': 'green',
    'drifted': 'yellow',
    'error': 'red',
    'skipped_locked': 'yellow',
    'cancelled': 'yellow',
}


@click.group()
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.pass_context
def cli(ctx, log_level):
    """Infrastructure drift reconciliation controller."""
    ctx.ensure_object(dict)
    ctx.obj['log_level'] = log_level

    setup_logging(log_level)


def load_config(config_path: str = "drift.yaml") -> Config:
    """Load and validate configuration file."""
    try:
        config = Config(config_path)
        config.load()
        return config
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] Configuration file not found: {config_path}")
        sys.exit(1)
    except ConfigValidationError as e:
        console.print("[red]Configuration validation failed:[/red]\n")
        console.print(str(e))
        sys.exit(1)


def create_state_store(config: Config) -> StateStore:
    """Create the state store backend selected in the configuration."""
    settings = config.state_store
    if settings.backend == "memory":
        logger.warning("Using the in-memory state store; locks are not shared between processes")
        return InMemoryStateStore()
    if settings.backend == "dynamodb":
        session = boto3.Session(profile_name=settings.profile, region_name=settings.region)
        return DynamoDBStateStore(
            session.client('dynamodb'),
            settings.table_name,
            retry_strategy=RetryStrategy(),
        )
    return FileStateStore(settings.path)


def create_issue_sink(config: Config) -> Optional[IssueSink]:
    """Create the issue sink, or None if incidents are kept in the state store only."""
    if config.issues.github is None:
        return None
    return GitHubIssueSink(config.issues.github)


def create_chat_sinks(config: Config) -> List[ChatSink]:
    """Create the enabled chat sinks."""
    settings = config.notifications
    sinks: List[ChatSink] = []
    if settings.slack.enabled:
        sinks.append(SlackWebhookSink(settings.slack, timeout=settings.timeout_seconds))
    if settings.discord.enabled:
        sinks.append(DiscordWebhookSink(settings.discord, timeout=settings.timeout_seconds))
    return sinks


def create_lock_manager(config: Config, store: StateStore) -> LockManager:
    return LockManager(store, ttl_seconds=config.lock.ttl_seconds)


def create_tracker(config: Config, store: StateStore) -> IncidentTracker:
    labels = config.issues.github.labels if config.issues.github else None
    return IncidentTracker(store, issue_sink=create_issue_sink(config), labels=labels)


def create_controller(config: Config, store: Optional[StateStore] = None) -> ReconciliationController:
    """Create the reconciliation controller with all dependencies."""
    store = store or create_state_store(config)
    evaluator = PlanEvaluator(SubprocessPlanExecutor(config.executors.plan))
    engine = RemediationEngine(SubprocessApplyExecutor(config.executors.apply), evaluator)
    dispatcher = NotificationDispatcher(
        create_chat_sinks(config),
        failure_threshold=config.notifications.failure_threshold,
        recovery_timeout=config.notifications.recovery_timeout_seconds,
    )
    return ReconciliationController(
        lock_manager=create_lock_manager(config, store),
        evaluator=evaluator,
        engine=engine,
        tracker=create_tracker(config, store),
        dispatcher=dispatcher,
    )


def print_cycle_result(result: CycleResult) -> None:
    """Display the result of a reconciliation cycle."""
    if result.status != CycleStatus.COMPLETED:
        status = result.status.value
    else:
        status = result.outcome.status.value if result.outcome else "unknown"
    style = STATUS_STYLES.get(status, 'white')

    lines = [
        f"[bold]Environment:[/bold] {result.environment}",
        f"[bold]Result:[/bold] [{style}]{status}[/{style}]",
        f"[bold]Duration:[/bold] {result.duration:.1f}s",
    ]
    if result.outcome is not None and result.outcome.fingerprint:
        lines.append(f"[bold]Fingerprint:[/bold] {result.outcome.fingerprint[:12]}")
    if result.transition.value != "none":
        lines.append(f"[bold]Incident:[/bold] {result.transition.value}")
    if result.attempt is not None:
        lines.append(f"[bold]Remediation:[/bold] {result.attempt.outcome.value}")
    if result.notifications:
        lines.append(
            f"[bold]Notified:[/bold] {', '.join(kind.value for kind in result.notifications)}"
        )
    if result.error:
        lines.append(f"\n[red]{escape(result.error)}[/red]")
    if result.outcome is not None and result.outcome.is_drifted:
        lines.append(f"\n{escape(result.outcome.change_summary)}")

    console.print(Panel("\n".join(lines), title="Reconciliation Cycle", border_style=style))


@cli.command()
@click.option('--config', default='drift.yaml', help='Path to configuration file')
@click.option('--max-workers', default=4, type=click.IntRange(1, 64), help='Maximum concurrent cycles')
def run(config, max_workers):
    """Reconcile all enabled environments on their schedules."""
    cfg = load_config(config)

    try:
        scheduler = ReconciliationScheduler(
            create_controller(cfg),
            cfg.get_environments(),
            max_workers=max_workers,
        )
    except ReconciliationError as e:
        console.print(e.to_user_message())
        sys.exit(1)

    stop_event = threading.Event()

    def signal_handler(sig, frame):
        console.print("\n[yellow]Shutting down, cancelling in-flight cycles...[/yellow]")
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    console.print(Panel(
        f"[bold]Project:[/bold] {cfg.project.name}\n"
        f"[bold]Environments:[/bold] {', '.join(sorted(scheduler.environments)) or 'none'}\n"
        f"[bold]Disabled:[/bold] {', '.join(scheduler.disabled) or 'none'}\n\n"
        f"[dim]Press Ctrl+C to stop[/dim]",
        title="Drift Reconciler",
        border_style="green"
    ))

    scheduler.run_forever(stop_event)
    console.print("[green]Scheduler stopped[/green]")


@cli.command()
@click.option('--env', required=True, help='Environment name')
@click.option('--config', default='drift.yaml', help='Path to configuration file')
def reconcile(env, config):
    """Run one reconciliation cycle for an environment now."""
    cfg = load_config(config)

    try:
        env_config = cfg.get_environment(env)
    except ConfigValidationError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if not env_config.drift_detection_enabled:
        console.print(f"[yellow]Drift detection is disabled for {env}; nothing to do[/yellow]")
        sys.exit(1)

    cancel_event = threading.Event()

    def signal_handler(sig, frame):
        console.print("\n[yellow]Cancelling cycle...[/yellow]")
        cancel_event.set()

    previous_handler = signal.signal(signal.SIGINT, signal_handler)

    try:
        result = create_controller(cfg).reconcile(env_config, cancel_event)
    except ReconciliationError as e:
        console.print(e.to_user_message())
        sys.exit(1)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    print_cycle_result(result)
    if result.status != CycleStatus.COMPLETED or result.error:
        sys.exit(1)


@cli.command()
@click.option('--config', default='drift.yaml', help='Path to configuration file')
def status(config):
    """Show lock and incident state of every environment."""
    cfg = load_config(config)

    try:
        store = create_state_store(cfg)
        lock_manager = create_lock_manager(cfg, store)
        tracker = IncidentTracker(store)

        table = Table(title=f"{cfg.project.name} Environments", show_header=True, header_style="bold cyan")
        table.add_column("Environment", style="cyan")
        table.add_column("Detection")
        table.add_column("Auto-remediate")
        table.add_column("Lock", style="magenta")
        table.add_column("Incident")
        table.add_column("Issue")
        table.add_column("Last Updated", style="dim")

        for env_config in cfg.get_environments():
            lock = lock_manager.inspect(env_config.name)
            if lock is None:
                lock_text = "-"
            elif lock_manager.is_stale(lock):
                lock_text = f"[red]stale[/red] ({lock.holder_id})"
            else:
                lock_text = f"{lock.holder_id} until {lock.expires_at.strftime('%H:%M:%S')}"

            incident = tracker.get(env_config.name)
            if incident is None:
                incident_text, issue, updated = "-", "-", "-"
            else:
                style = 'green' if incident.state.value == 'closed' else 'yellow'
                incident_text = f"[{style}]{incident.state.value}[/{style}]"
                issue = incident.external_id or "-"
                updated = incident.last_updated_at.strftime('%Y-%m-%d %H:%M:%S')

            table.add_row(
                env_config.name,
                "on" if env_config.drift_detection_enabled else "[dim]off[/dim]",
                "on" if env_config.auto_remediate else "off",
                lock_text,
                incident_text,
                issue,
                updated,
            )

        console.print(table)

    except ReconciliationError as e:
        console.print(e.to_user_message())
        sys.exit(1)


@cli.command()
@click.option('--env', required=True, help='Environment name')
@click.option('--force', is_flag=True, help='Release the lock even if it has not expired')
@click.option('--config', default='drift.yaml', help='Path to configuration file')
def unlock(env, force, config):
    """Release an environment lock left behind by a crashed run."""
    cfg = load_config(config)

    try:
        cfg.get_environment(env)
        lock_manager = create_lock_manager(cfg, create_state_store(cfg))

        lock = lock_manager.inspect(env)
        if lock is None:
            console.print(f"[dim]No lock held for {env}[/dim]")
            return

        if not force and not lock_manager.is_stale(lock):
            console.print(
                f"[yellow]Lock held by {lock.holder_id} until {lock.expires_at.isoformat()}[/yellow]\n"
                "Use [cyan]--force[/cyan] to release it anyway."
            )
            sys.exit(1)

        if lock_manager.force_release(env, only_if_stale=not force):
            console.print(f"[green]Released lock held by {lock.holder_id}[/green]")
        else:
            console.print("[yellow]Lock changed while releasing; run status to inspect it[/yellow]")
            sys.exit(1)

    except (ConfigValidationError, ReconciliationError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


@cli.command()
@click.option('--config', default='drift.yaml', help='Path to configuration file')
def validate(config):
    """Validate configuration file."""
    cfg = load_config(config)

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Environment", style="cyan")
    table.add_column("Spec")
    table.add_column("State Key")
    table.add_column("Interval", justify="right")
    table.add_column("Detection")
    table.add_column("Auto-remediate")

    for env_config in cfg.get_environments():
        table.add_row(
            env_config.name,
            env_config.spec_path,
            env_config.state_key,
            f"{env_config.schedule_interval_seconds}s",
            "on" if env_config.drift_detection_enabled else "off",
            "on" if env_config.auto_remediate else "off",
        )

    console.print(f"[green]✓[/green] {config} is valid ({cfg.state_store.backend} state store)\n")
    console.print(table)


if __name__ == '__main__':
    cli()
