"""Engine factory: wires configuration, storage, registry and engine together."""

import threading
from typing import Iterable, Optional

from .config import EngineConfig, get_config, validate_config
from .core.catalog import WorkflowCatalog
from .core.logging import get_logger, setup_logging
from .core.notifications import NotificationChannel
from .core.orchestrator import WorkflowEngine
from .core.registry import ExecutorRegistry
from .executors import StepExecutor, builtin_executors
from .storage.database import create_database_engine, create_session_factory, create_tables
from .storage.store import SQLAlchemyExecutionStore


def create_registry(extra_executors: Optional[Iterable[StepExecutor]] = None) -> ExecutorRegistry:
    """Registry holding the built-in executors plus ``extra_executors``."""
    registry = ExecutorRegistry(builtin_executors())
    for executor in extra_executors or []:
        registry.register(executor, replace=True)
    return registry


def create_engine(
    config: Optional[EngineConfig] = None,
    extra_executors: Optional[Iterable[StepExecutor]] = None,
    notifier: Optional[NotificationChannel] = None,
    configure_logging: bool = True,
    start_sweeper: bool = True,
    recover: bool = True
) -> WorkflowEngine:
    """
    Build a ready-to-use :class:`WorkflowEngine`.

    Args:
        config: Engine configuration; defaults to the global configuration
        extra_executors: Executors registered next to the built-ins
        notifier: Channel for suspend-and-wait notifications
        configure_logging: Apply the configured logging setup
        start_sweeper: Start the background timeout sweeper
        recover: Re-drive executions interrupted by a previous process

    Returns:
        The configured engine
    """
    config = config or get_config()
    validate_config(config)

    if configure_logging:
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.structured_logging
        )
    logger = get_logger(__name__)

    db_engine = create_database_engine(config.database_url, echo=config.database_echo)
    create_tables(db_engine)
    session_factory = create_session_factory(db_engine)
    logger.info("Database tables created")

    storage_lock = threading.RLock()
    registry = create_registry(extra_executors)
    catalog = WorkflowCatalog(session_factory, registry, lock=storage_lock)
    store = SQLAlchemyExecutionStore(session_factory, lock=storage_lock)

    engine = WorkflowEngine(
        catalog=catalog,
        store=store,
        registry=registry,
        notifier=notifier,
        default_settings=config.workflow_defaults(),
        max_concurrent_executions=config.max_concurrent_executions,
        max_parallel_steps=config.max_parallel_steps,
        sweep_interval=config.sweep_interval
    )

    if recover:
        engine.recover()
    if start_sweeper:
        engine.start_sweeper()

    logger.info(f"Workflow engine ready with {len(registry)} step types")
    return engine
