"""HookLineCache - Offline-first asset caching dispatcher for Hook Line Studio."""

import argparse
import logging
import signal
import sys
from threading import Event

__version__ = "0.1.0"

# Global shutdown event for signal handlers
_shutdown_event: Event | None = None

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def _handle_shutdown(signum: int, frame: object) -> None:
    """Signal handler for graceful shutdown."""
    sig_name = signal.Signals(signum).name
    logger.info("Received %s, initiating shutdown...", sig_name)
    if _shutdown_event is not None:
        _shutdown_event.set()


def _load_worker(args: argparse.Namespace):
    """Load configuration and build the worker, exiting on failure."""
    from .config import ConfigError, load_config
    from .storage import StorageError
    from .worker import ServiceWorker

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    try:
        return ServiceWorker(config)
    except StorageError as e:
        logger.error("Cache storage error: %s", e)
        sys.exit(1)


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the run command - install the worker and start the proxy."""
    global _shutdown_event

    _setup_logging(args.verbose)

    logger.info("HookLineCache %s starting...", __version__)

    from .lifecycle import InstallError
    from .proxy import ProxyError, ProxyServer

    # 1. Load configuration and open the cache store
    worker = _load_worker(args)
    config = worker.config
    logger.info("Configuration loaded from %s", args.config)
    logger.info("Caching %s as version %s", config.network.origin, config.cache.version)

    # 2. Setup shutdown handler
    _shutdown_event = Event()
    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    proxy: ProxyServer | None = None

    try:
        # 3. Install and activate
        try:
            worker.register()
        except InstallError as e:
            logger.error("Worker install failed: %s", e)
            logger.warning("Continuing without pre-cached assets; the previous version's caches stay in place")

        # 4. Start proxy
        if config.proxy.enabled:
            try:
                proxy = ProxyServer(config.proxy, worker)
                proxy.start()
            except ProxyError as e:
                logger.error("Failed to start proxy server: %s", e)
                worker.close()
                sys.exit(1)
        else:
            logger.warning("Proxy disabled, nothing will be served")

        logger.info("All components started, waiting for shutdown signal...")

        # 5. Wait for shutdown signal
        _shutdown_event.wait()

    except KeyboardInterrupt:
        # Backup handler if signal doesn't work
        logger.info("Keyboard interrupt received")
    finally:
        # 6. Cleanup
        logger.info("Shutting down components...")

        if proxy is not None:
            proxy.stop()

        worker.close()
        logger.info("Shutdown complete")


def _cmd_clean(args: argparse.Namespace) -> None:
    """Execute the clean command - remove stale or all caches."""
    _setup_logging(args.verbose)
    from .storage import StorageError

    worker = _load_worker(args)
    try:
        if args.all:
            names = worker.storage.keys()
            worker.reset()
            print(f"Deleted all {len(names)} caches.")
        else:
            deleted = worker.registry.purge_stale()
            print(f"Deleted {len(deleted)} stale caches.")
    except StorageError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        worker.close()


def _cmd_cache_size(args: argparse.Namespace) -> None:
    """Execute the cache-size command - print stored bytes per cache."""
    _setup_logging(args.verbose)
    from .storage import StorageError

    worker = _load_worker(args)
    try:
        for name, size in worker.registry.usage().items():
            print(f"{name}: {size} bytes")
        print(f"Total: {worker.cache_size()} bytes")
    except StorageError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        worker.close()


def _cmd_sync(args: argparse.Namespace) -> None:
    """Execute the sync command - flush pending analytics once."""
    _setup_logging(args.verbose)

    worker = _load_worker(args)
    try:
        if not worker.sync.has_pending():
            print("No pending analytics.")
            return
        if worker.on_sync(worker.config.sync.tag):
            print("Pending analytics delivered.")
        else:
            print("Error: pending analytics could not be delivered")
            sys.exit(1)
    finally:
        worker.close()


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )


def main() -> None:
    """Main entry point for the hooklinecache package."""
    parser = argparse.ArgumentParser(
        description="HookLineCache - Offline-first asset caching for Hook Line Studio"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"hooklinecache {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # Run subcommand (default behavior)
    run_parser = subparsers.add_parser(
        "run",
        help="Install the worker and start the caching proxy (default)",
    )
    _add_common_arguments(run_parser)
    run_parser.set_defaults(func=_cmd_run)

    # Clean subcommand
    clean_parser = subparsers.add_parser(
        "clean",
        help="Delete caches left behind by older versions",
    )
    _add_common_arguments(clean_parser)
    clean_parser.add_argument(
        "--all",
        action="store_true",
        help="Delete every cache, including the current version's",
    )
    clean_parser.set_defaults(func=_cmd_clean)

    # Cache-size subcommand
    size_parser = subparsers.add_parser(
        "cache-size",
        help="Print the stored size of every cache",
    )
    _add_common_arguments(size_parser)
    size_parser.set_defaults(func=_cmd_cache_size)

    # Sync subcommand
    sync_parser = subparsers.add_parser(
        "sync",
        help="Deliver pending analytics to the origin",
    )
    _add_common_arguments(sync_parser)
    sync_parser.set_defaults(func=_cmd_sync)

    args = parser.parse_args()

    # Default to 'run' if no command specified
    if args.command is None:
        args.config = "config.yaml"
        args.verbose = False
        args.func = _cmd_run

    args.func(args)
