"""Execution module for the Trading Arena.

- SimulatedExecutor: ledger arithmetic for paper agents
- LiveExecutor: staged venue orders for live agents
- Reconcilers keeping each agent's portfolio current
"""

from arena.execution.base import ExecutionEngine
from arena.execution.live import LiveExecutor
from arena.execution.precision import PrecisionAdapter
from arena.execution.reconciliation import LiveReconciler, SimulatedReconciler
from arena.execution.simulated import SimulatedExecutor

__all__ = [
    "ExecutionEngine",
    "LiveExecutor",
    "LiveReconciler",
    "PrecisionAdapter",
    "SimulatedExecutor",
    "SimulatedReconciler",
]
