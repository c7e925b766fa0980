from .logging import setup_logger
from .loop import bootstrap_dependencies, run_cycle_loop, wait_with_stop
from .settings import AppSettings

__all__ = [
    "AppSettings",
    "bootstrap_dependencies",
    "run_cycle_loop",
    "setup_logger",
    "wait_with_stop",
]
