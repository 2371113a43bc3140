"""Main application entry point."""

import argparse
import asyncio
import functools
import json
import signal
import sys
from datetime import datetime, timezone
from typing import Optional

from aiohttp import web, web_runner
from pydantic import ValidationError

from .config import ConfigLoader, ConfigurationError, validate_settings
from .config.settings import AppSettings, LoggingSettings, get_settings, set_settings
from .core import ChangeCapture, PassReport, ReconciliationEngine, VersionRetention
from .database import DatabaseManager, SyncStateService, default_database_url, init_database
from .scheduler import SyncScheduler
from .storage import RemoteObjectStore, StoreFactory
from .utils.logging import get_logger, setup_logging
from .vault import VaultFileSystem


EXIT_OK = 0
EXIT_ITEM_FAILURES = 1
EXIT_CONFIGURATION = 2


class VaultSyncApp:
    """Wires the store, vault, state, engine and scheduler together."""

    def __init__(self, settings: Optional[AppSettings] = None):
        """Initialize the application."""
        self.settings = settings or get_settings()
        self.logger = get_logger("VaultSync")
        self.running = False
        self.started_at: Optional[datetime] = None
        self.web_runner: Optional[web_runner.AppRunner] = None

        self.store: Optional[RemoteObjectStore] = None
        self.vault: Optional[VaultFileSystem] = None
        self.db_manager: Optional[DatabaseManager] = None
        self.state: Optional[SyncStateService] = None
        self.engine: Optional[ReconciliationEngine] = None
        self.capture: Optional[ChangeCapture] = None
        self.retention: Optional[VersionRetention] = None
        self.scheduler: Optional[SyncScheduler] = None

    def build(self):
        """Create every component.

        Raises:
            ConfigurationError: If the settings cannot support a sync pass
        """
        if self.engine is not None:
            return

        validate_settings(self.settings)
        sync = self.settings.sync

        self.store = StoreFactory.create_store(self.settings)
        self.vault = VaultFileSystem(sync.vault_path)

        database_url = self.settings.state.database_url or default_database_url(sync.vault_path)
        self.db_manager = init_database(database_url, create_tables=True)
        self.state = SyncStateService(self.db_manager)

        self.engine = ReconciliationEngine(
            store=self.store,
            vault=self.vault,
            state=self.state,
            max_concurrency=sync.max_concurrency,
            remote_delete_policy=sync.remote_delete_policy
        )
        self.capture = ChangeCapture(self.engine)
        self.retention = VersionRetention(self.store, retention_count=sync.retention_count)
        self.scheduler = SyncScheduler(self.engine, self.capture, self.retention, sync)

        self.logger.info(
            "Components initialized",
            vault=str(self.vault.root),
            store=self.store.__class__.__name__,
            bucket=self.store.bucket
        )

    async def startup(self):
        """Start the watch daemon."""
        self.logger.info(
            "Starting vaultsync",
            version=self.settings.version,
            environment=self.settings.environment
        )
        self.build()
        sync = self.settings.sync

        if not await self.store.health_check():
            self.logger.warning("Remote store unreachable at startup, passes will retry", bucket=self.store.bucket)

        if self.settings.server.enabled:
            await self._setup_web_server()

        # Baseline first so edits made during the startup sync are still seen
        await self.vault.prime()
        self.capture.start(self.vault.subscribe())

        if sync.sync_on_startup:
            report = await self.engine.full_sync(trigger="startup")
            self.logger.info("Startup sync finished", summary=report.summary())

        self.vault.start_watching(sync.poll_interval_seconds)
        self.scheduler.start()

        self.running = True
        self.started_at = datetime.now(timezone.utc)
        self.logger.info("vaultsync started successfully")

    async def shutdown(self):
        """Stop background work and release resources."""
        self.logger.info("Shutting down vaultsync")
        self.running = False

        if self.scheduler:
            self.scheduler.stop()

        if self.vault:
            await self.vault.stop_watching()

        if self.capture and self.capture.running:
            try:
                await self.capture.flush()
            except Exception as e:
                self.logger.warning("Final flush failed", error=str(e))
            await self.capture.stop()

        await self._stop_web_server()

        if self.store:
            await self.store.close()
        if self.db_manager:
            self.db_manager.close()

        self.logger.info("vaultsync stopped")

    async def run(self):
        """Run until a shutdown signal arrives."""
        await self.startup()

        try:
            while self.running:
                await asyncio.sleep(1)
        finally:
            await self.shutdown()

    async def close(self):
        if self.store:
            await self.store.close()
        if self.db_manager:
            self.db_manager.close()

    async def _setup_web_server(self):
        """Set up web server for health checks and status."""
        web_app = web.Application()
        web_app.router.add_get('/health', self._health_handler)
        web_app.router.add_get('/status', self._status_handler)

        self.web_runner = web_runner.AppRunner(web_app)
        await self.web_runner.setup()

        host, port = self.settings.server.host, self.settings.server.port
        site = web_runner.TCPSite(self.web_runner, host, port)
        await site.start()

        self.logger.info("Web server started", url=f"http://{host}:{port}")

    async def _stop_web_server(self):
        if self.web_runner:
            await self.web_runner.cleanup()
            self.web_runner = None
            self.logger.info("Web server stopped")

    async def _health_handler(self, request):
        """Health check endpoint."""
        uptime = (datetime.now(timezone.utc) - self.started_at).total_seconds() if self.started_at else 0
        health_data = {
            "status": "healthy" if self.running else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": self.settings.version,
            "environment": self.settings.environment,
            "uptime_seconds": uptime
        }

        status_code = 200 if self.running else 503
        return web.json_response(health_data, status=status_code)

    async def _status_handler(self, request):
        """Detailed status endpoint."""
        last_report = self.engine.last_report if self.engine else None
        status_data = {
            "application": {
                "name": self.settings.name,
                "version": self.settings.version,
                "running": self.running,
                "timestamp": datetime.now(timezone.utc).isoformat()
            },
            "vault": str(self.vault.root) if self.vault else None,
            "store": self.store.get_store_info() if self.store else None,
            "pending_paths": len(self.capture.pending) if self.capture else 0,
            "pending_operations": self.capture.pending_operations if self.capture else 0,
            "sync_in_progress": self.engine.is_running if self.engine else False,
            "last_pass": last_report.to_dict() if last_report else None,
            "scheduler": self.scheduler.get_scheduler_stats() if self.scheduler else None
        }

        return web.json_response(status_data, dumps=functools.partial(json.dumps, default=str))


def setup_signal_handlers(app: VaultSyncApp):
    """Set up signal handlers for graceful shutdown."""
    def signal_handler(signum, frame):
        app.logger.info("Received signal", signum=signum)
        app.running = False
        if app.engine:
            app.engine.cancel()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


# Commands

def _exit_code(report: PassReport) -> int:
    return EXIT_ITEM_FAILURES if report.failures else EXIT_OK


def _print_failures(report: PassReport):
    for outcome in report.failures:
        print(f"  {outcome.path or outcome.alias}: {outcome.reason}")


async def cmd_sync(app: VaultSyncApp, args) -> int:
    app.build()
    try:
        report = await app.engine.full_sync(trigger="cli")
    finally:
        await app.close()

    print(report.summary())
    _print_failures(report)
    return _exit_code(report)


async def cmd_gc(app: VaultSyncApp, args) -> int:
    app.build()
    try:
        report = await app.retention.run(keep=args.keep)
    finally:
        await app.close()

    print(report.summary())
    for key, error in report.failures.items():
        print(f"  {key}: {error}")
    return EXIT_ITEM_FAILURES if report.failures else EXIT_OK


async def cmd_watch(app: VaultSyncApp, args) -> int:
    setup_signal_handlers(app)
    await app.run()
    return EXIT_OK


async def cmd_status(app: VaultSyncApp, args) -> int:
    settings = app.settings
    database_url = settings.state.database_url or default_database_url(settings.sync.vault_path)
    db_manager = init_database(database_url, create_tables=True)
    try:
        state = SyncStateService(db_manager)
        synced = state.get_synced_files()
        passes = state.recent_passes(limit=args.limit)
    finally:
        db_manager.close()

    print(f"Vault: {settings.sync.vault_path}")
    print(f"Bucket: {settings.storage.bucket} ({settings.storage.backend.value})")
    print(f"Synced files: {len(synced)}")
    if not passes:
        print("No sync passes recorded")
    for record in passes:
        print(
            f"  #{record.id} {record.started_at:%Y-%m-%d %H:%M:%S} {record.trigger} "
            f"{record.status}: {record.summary or record.error_message or ''}"
        )
    return EXIT_OK


async def cmd_mv(app: VaultSyncApp, args) -> int:
    app.build()
    try:
        await app.vault.rename(args.old_path, args.new_path)
        outcome = await app.engine.propagate_move(args.old_path, args.new_path)
    finally:
        await app.close()

    print(f"{outcome.kind.value}: {outcome.path} {outcome.reason or ''}".rstrip())
    return EXIT_ITEM_FAILURES if outcome.error else EXIT_OK


async def cmd_rm(app: VaultSyncApp, args) -> int:
    app.build()
    try:
        await app.vault.delete(args.path)
        outcome = await app.engine.propagate_delete(args.path)
    finally:
        await app.close()

    print(f"{outcome.kind.value}: {outcome.path} {outcome.reason or ''}".rstrip())
    return EXIT_ITEM_FAILURES if outcome.error else EXIT_OK


COMMANDS = {
    "sync": cmd_sync,
    "gc": cmd_gc,
    "watch": cmd_watch,
    "status": cmd_status,
    "mv": cmd_mv,
    "rm": cmd_rm,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vaultsync",
        description="Bidirectional sync and versioning of a local vault with an object store"
    )
    parser.add_argument("--config", help="YAML or JSON settings file")
    parser.add_argument("--vault", help="Vault directory (overrides settings)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("sync", help="Run one full reconciliation pass")

    gc_parser = subparsers.add_parser("gc", help="Delete old versions beyond the retention count")
    gc_parser.add_argument("--keep", type=int, default=None, help="Versions to keep per file")

    subparsers.add_parser("watch", help="Watch the vault and sync continuously")

    status_parser = subparsers.add_parser("status", help="Show recent sync passes")
    status_parser.add_argument("--limit", type=int, default=10)

    mv_parser = subparsers.add_parser("mv", help="Rename a vault file and move its remote history")
    mv_parser.add_argument("old_path")
    mv_parser.add_argument("new_path")

    rm_parser = subparsers.add_parser("rm", help="Delete a vault file and its remote history")
    rm_parser.add_argument("path")

    return parser


def load_settings(args) -> AppSettings:
    """Settings from the environment, an optional file and command-line overrides."""
    if args.config:
        settings = ConfigLoader().load_from_file(args.config)
    else:
        settings = get_settings()

    if args.vault:
        settings.sync.vault_path = args.vault
    if args.log_level:
        try:
            settings.logging = LoggingSettings(
                level=args.log_level,
                format=settings.logging.format,
                file_path=settings.logging.file_path
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid log level: {args.log_level}") from e

    return set_settings(settings)


def cli(argv=None) -> int:
    """Console script entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args)
        setup_logging()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIGURATION

    if args.command == "gc" and args.keep is not None and args.keep < 1:
        print("Configuration error: --keep must be at least 1", file=sys.stderr)
        return EXIT_CONFIGURATION

    app = VaultSyncApp(settings)
    try:
        return asyncio.run(COMMANDS[args.command](app, args))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIGURATION
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        return EXIT_OK
    except Exception as e:
        print(f"vaultsync failed: {e}", file=sys.stderr)
        return EXIT_ITEM_FAILURES


if __name__ == "__main__":
    sys.exit(cli())
