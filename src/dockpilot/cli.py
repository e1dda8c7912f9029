"""Command-line entrypoint.

A thin text front end over the core: every command builds an EngineClient,
runs one coroutine with asyncio.run and prints plain lines. Failures surface
as DockPilotError and map to ExitCode values.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable, Optional, Sequence

from . import __version__, get_log_path
from .actions import ActionDispatcher, LifecycleAction
from .cache import ResourceCache, ResourceKind
from .config import ConfigManager, LogConfig, get_config_manager
from .deploy import DeploymentOrchestrator
from .engine import EngineClient
from .errors import ConnectivityError, DockPilotError, ExitCode, OperationError, ValidationError, user_facing_error
from .provisioning import ProvisioningSession, ProvisioningWorkflow
from .templates import Template, TemplateStore, export_filename
from .validation import validate_image_name
from .views import ViewCoordinator

logger = logging.getLogger(__name__)

Printer = Callable[[str], None]


def configure_logging(log_config: LogConfig) -> None:
    log_path = log_config.file_path or get_log_path()
    handler = RotatingFileHandler(
        log_path,
        maxBytes=log_config.max_size_mb * 1024 * 1024,
        backupCount=log_config.backup_count,
    )
    logging.basicConfig(
        level=getattr(logging, str(log_config.level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[handler],
        force=True,
    )


def _format_bytes(size: float) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}TB"


def _confirm(prompt: str) -> bool:
    return input(f"{prompt} [y/N] ").strip().lower() in ("y", "yes")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dockpilot", description="Docker engine client")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config-dir", type=Path, default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    ps = sub.add_parser("ps", help="List containers")
    ps.add_argument("-a", "--all", action="store_true", help="Include stopped containers")

    inspect = sub.add_parser("inspect", help="Show container details")
    inspect.add_argument("container")

    logs = sub.add_parser("logs", help="Show container logs")
    logs.add_argument("container")
    logs.add_argument("--tail", default=None, help="Line count or 'all'")

    stats = sub.add_parser("stats", help="Show one resource sample for a running container")
    stats.add_argument("container")

    watch = sub.add_parser("watch", help="Keep the container list refreshed")
    watch.add_argument("-a", "--all", action="store_true")
    watch.add_argument("--interval", type=float, default=None)
    watch.add_argument("--ticks", type=int, default=0, help="Stop after N refreshes (0 = forever)")

    action = sub.add_parser("action", help="Run a lifecycle action")
    action.add_argument("name", choices=[a.value for a in LifecycleAction])
    action.add_argument("container")
    action.add_argument("-y", "--yes", action="store_true", help="Do not ask before removing")

    pull = sub.add_parser("pull", help="Pull an image")
    pull.add_argument("image")

    search = sub.add_parser("search", help="Search the registry")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=None)

    deploy = sub.add_parser("deploy", help="Create one container per compose service")
    deploy.add_argument("file", type=Path)
    deploy.add_argument("--start", action="store_true", help="Start the created containers")

    templates = sub.add_parser("templates", help="Manage container templates")
    tsub = templates.add_subparsers(dest="templates_command", required=True)
    tlist = tsub.add_parser("list")
    tlist.add_argument("--category", default="all")
    texport = tsub.add_parser("export")
    texport.add_argument("template_id", nargs="?", help="Omit to export every user template")
    texport.add_argument("-o", "--output", type=Path, default=None)
    timport = tsub.add_parser("import")
    timport.add_argument("file", type=Path)
    tdelete = tsub.add_parser("delete")
    tdelete.add_argument("template_id")
    tdelete.add_argument("-y", "--yes", action="store_true")
    tuse = tsub.add_parser("use", help="Pull if missing, then create and start a container")
    tuse.add_argument("template_id")
    tuse.add_argument("--name", default=None)

    theme = sub.add_parser("theme", help="Set the display preference")
    theme.add_argument("mode", choices=["dark", "light"])
    return parser


async def _cmd_ps(args, engine: EngineClient, config_manager: ConfigManager, out: Printer) -> int:
    cache = ResourceCache(engine)
    snapshot = (await cache.refresh(ResourceKind.CONTAINERS, args.all)).unwrap()
    _print_containers(snapshot.data, out)
    return int(ExitCode.SUCCESS)


def _print_containers(records, out: Printer) -> None:
    if not records:
        out("No containers")
        return
    for c in records:
        ports = ", ".join(str(p) for p in c.ports)
        out(f"{c.short_id}  {c.name:<24} {c.state:<10} {c.image:<30} {ports}")


async def _cmd_inspect(args, engine, config_manager, out: Printer) -> int:
    detail = (await engine.get_container_details(args.container)).unwrap()
    out(f"{detail.name} ({detail.id[:12]})")
    out(f"  image:   {detail.image}")
    out(f"  state:   {detail.state}")
    out(f"  created: {detail.created}")
    for port in detail.ports:
        out(f"  port:    {port}")
    for mount in detail.mounts:
        out(f"  mount:   {mount.source} -> {mount.destination} ({mount.mount_type}, {'rw' if mount.rw else 'ro'})")
    for name, ip in detail.networks.items():
        out(f"  network: {name} {ip}")
    for entry in detail.env:
        out(f"  env:     {entry}")
    return int(ExitCode.SUCCESS)


async def _cmd_logs(args, engine, config_manager, out: Printer) -> int:
    tail = args.tail or config_manager.get_config().ui.log_tail
    out((await engine.get_container_logs(args.container, tail)).unwrap().rstrip("\n"))
    return int(ExitCode.SUCCESS)


async def _cmd_stats(args, engine, config_manager, out: Printer) -> int:
    cache = ResourceCache(engine)
    (await cache.refresh(ResourceKind.CONTAINER_DETAIL, args.container)).unwrap()
    snapshot = (await cache.refresh(ResourceKind.STATS, args.container)).unwrap()
    if snapshot is None:
        out(f"{args.container} is not running")
        return int(ExitCode.SUCCESS)
    s = snapshot.data
    out(f"CPU {s.cpu_percent:.2f}%  MEM {_format_bytes(s.memory_usage)} / {_format_bytes(s.memory_limit)} "
        f"({s.memory_percent:.1f}%)  NET rx {_format_bytes(s.network_rx)} tx {_format_bytes(s.network_tx)}")
    return int(ExitCode.SUCCESS)


async def _cmd_watch(args, engine, config_manager, out: Printer) -> int:
    coordinator = ViewCoordinator(engine, config_manager)
    if args.interval:
        coordinator.scheduler.interval = args.interval
    coordinator.show_all = args.all
    if not await coordinator.start():
        raise ConnectivityError(coordinator.error or "Docker engine is not reachable")
    seen = coordinator.cache.version
    shown = 0
    try:
        while args.ticks <= 0 or shown < args.ticks:
            await asyncio.sleep(0.25)
            if not coordinator.connected:
                raise ConnectivityError(coordinator.error or "Connection lost")
            if coordinator.cache.version == seen:
                continue
            seen = coordinator.cache.version
            snapshot = coordinator.cache.get(ResourceKind.CONTAINERS, coordinator.show_all)
            if snapshot is not None:
                out(f"-- {len(snapshot.data)} containers")
                _print_containers(snapshot.data, out)
                shown += 1
    finally:
        await coordinator.shutdown()
    return int(ExitCode.SUCCESS)


async def _cmd_action(args, engine, config_manager, out: Printer) -> int:
    dispatcher = ActionDispatcher(engine, ResourceCache(engine))
    confirm_fn = (lambda _prompt: True) if args.yes else _confirm
    outcome = await dispatcher.apply(args.name, args.container, confirm_fn)
    if outcome.cancelled:
        out("Cancelled")
        return int(ExitCode.SUCCESS)
    if not outcome.ok:
        raise OperationError(outcome.error)
    out(f"{outcome.action.value}: {args.container}")
    return int(ExitCode.SUCCESS)


async def _cmd_pull(args, engine, config_manager, out: Printer) -> int:
    image = validate_image_name(args.image)
    out(f"Pulling {image}...")
    (await engine.pull_image(image)).unwrap()
    out(f"Successfully pulled {image}")
    return int(ExitCode.SUCCESS)


async def _cmd_search(args, engine, config_manager, out: Printer) -> int:
    limit = args.limit or config_manager.get_config().docker.search_limit
    for r in (await engine.search_registry(args.query, limit)).unwrap():
        badge = " [official]" if r.is_official else ""
        out(f"{r.name:<40} {r.star_count:>7}*{badge}  {r.description}")
    return int(ExitCode.SUCCESS)


async def _cmd_deploy(args, engine, config_manager, out: Printer) -> int:
    try:
        text = args.file.read_text()
    except OSError as e:
        raise ValidationError(f"Cannot read {args.file}: {e}") from e
    orchestrator = DeploymentOrchestrator(engine)
    report = await orchestrator.deploy(text)
    for result in report.results:
        if result.success:
            out(f"created  {result.service_name:<24} {result.container_id[:12]}")
        else:
            out(f"failed   {result.service_name:<24} {result.error}")
    out(report.summary())
    if args.start and report.successes:
        started = await orchestrator.start_all(report)
        for outcome in started.outcomes:
            if not outcome.ok:
                out(f"start failed {outcome.service_name}: {outcome.error}")
        out(f"Started {started.started} of {len(started.outcomes)} containers")
    report.raise_for_failures()
    return int(ExitCode.SUCCESS)


async def _cmd_templates(args, engine, config_manager, out: Printer) -> int:
    store = TemplateStore(config_manager.config_dir)
    command = args.templates_command
    if command == "list":
        for t in store.list(args.category):
            marker = "*" if t.is_custom else " "
            out(f"{marker} {t.id:<24} {t.image:<36} {t.description}")
        return int(ExitCode.SUCCESS)
    if command == "export":
        if args.template_id:
            text = store.export_template(args.template_id)
            default_name = export_filename(store.get(args.template_id))
        else:
            text = store.export_all()
            default_name = TemplateStore.EXPORT_ALL_FILE_NAME
        target = args.output or Path(default_name)
        target.write_text(text)
        out(f"Exported to {target}")
        return int(ExitCode.SUCCESS)
    if command == "import":
        try:
            text = args.file.read_text()
        except OSError as e:
            raise ValidationError(f"Cannot read {args.file}: {e}") from e
        for t in store.import_templates(text):
            out(f"Imported {t.name} as {t.id}")
        return int(ExitCode.SUCCESS)
    if command == "delete":
        if not args.yes and not _confirm(f"Delete template {args.template_id}?"):
            out("Cancelled")
            return int(ExitCode.SUCCESS)
        if not store.delete(args.template_id):
            raise ValidationError(f"No such user template: {args.template_id}")
        out(f"Deleted {args.template_id}")
        return int(ExitCode.SUCCESS)
    return await _use_template(args, engine, config_manager, store, out)


async def _use_template(args, engine, config_manager, store: TemplateStore, out: Printer) -> int:
    template = store.get(args.template_id)
    if template is None:
        raise ValidationError(f"No such template: {args.template_id}",
                              hint="Run 'dockpilot templates list'")
    spec = template.to_container_spec(args.name).validate()
    created = {}

    async def create(chosen: Template) -> None:
        created["result"] = await engine.create_and_start_container(spec)

    def show(session: ProvisioningSession) -> None:
        out(session.message)
        if session.error:
            out(f"  {session.error}")

    workflow = ProvisioningWorkflow(engine, template, on_transition=show, handoff=create,
                                    pacing_delay=config_manager.get_config().sync.pacing_delay)
    await workflow.run()
    if "result" not in created:
        raise OperationError(f"Provisioning of {template.name} stopped before creation")
    container_id = created["result"].unwrap()
    out(f"Started {container_id[:12]} from {template.name}")
    return int(ExitCode.SUCCESS)


async def _cmd_theme(args, engine, config_manager, out: Printer) -> int:
    config_manager.set_dark_mode(args.mode == "dark")
    out(f"Display preference: {args.mode}")
    return int(ExitCode.SUCCESS)


_COMMANDS = {
    "ps": _cmd_ps,
    "inspect": _cmd_inspect,
    "logs": _cmd_logs,
    "stats": _cmd_stats,
    "watch": _cmd_watch,
    "action": _cmd_action,
    "pull": _cmd_pull,
    "search": _cmd_search,
    "deploy": _cmd_deploy,
    "templates": _cmd_templates,
    "theme": _cmd_theme,
}

_OFFLINE_COMMANDS = {"theme"}


def main(argv: Optional[Sequence[str]] = None, out: Printer = print) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return int(exc.code or 0)

    config_manager = ConfigManager(args.config_dir) if args.config_dir else get_config_manager()
    config = config_manager.get_config()
    configure_logging(config.logging)
    logger.info(f"dockpilot {__version__}: {args.command}")

    offline = args.command in _OFFLINE_COMMANDS or (
        args.command == "templates" and args.templates_command != "use")
    engine = None if offline else EngineClient(base_url=config.docker.base_url)
    try:
        return asyncio.run(_COMMANDS[args.command](args, engine, config_manager, out))
    except DockPilotError as e:
        logger.error(f"{args.command} failed: {e}")
        print(user_facing_error(e), file=sys.stderr)
        return int(e.code)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return int(ExitCode.SUCCESS)


if __name__ == "__main__":
    sys.exit(main())
