"""Background jobs: payment hold expiry."""

from .expiry import run_expiry_sweep, setup_scheduler, shutdown_scheduler

__all__ = ["setup_scheduler", "run_expiry_sweep", "shutdown_scheduler"]
