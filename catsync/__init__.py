"""catsync - diff-based synchronization of tabular catalog data.

Detects rows of a local dataset that changed since the last successful
sync, queues them by priority and sends them to a rate-limited remote
catalog API in resumable, checkpointed batches.
"""

__version__ = "1.0.0"

__all__ = [
    "__version__",
    "SyncOrchestrator",
    "RunOptions",
    "RunResult",
    "ChangeDetector",
    "ExportQueue",
    "CatsyncConfig",
    "load_config",
]


def __getattr__(name: str):
    """Lazy import to avoid loading dependencies during setup."""
    if name in ("SyncOrchestrator", "RunOptions", "RunResult"):
        from catsync.sync import engine

        return getattr(engine, name)
    if name == "ChangeDetector":
        from catsync.sync.detector import ChangeDetector

        return ChangeDetector
    if name == "ExportQueue":
        from catsync.sync.queue import ExportQueue

        return ExportQueue
    if name in ("CatsyncConfig", "load_config"):
        from catsync import config

        return getattr(config, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
