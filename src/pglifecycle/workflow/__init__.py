"""Lifecycle workflows run against a live control plane."""

from .lifecycle import LifecycleReport, LifecycleRun, run_lifecycle
from .runner import run_cancellable
from .vm_smoke import run_vm_smoke

__all__ = [
    "LifecycleRun",
    "LifecycleReport",
    "run_lifecycle",
    "run_vm_smoke",
    "run_cancellable",
]
