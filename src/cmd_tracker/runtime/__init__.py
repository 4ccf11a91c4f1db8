"""Runtime module for process spawning, polling and output flushing.

This module provides isolated command execution with reliable termination,
the per-process poll scheduler and incremental output-to-log flushing.
"""

from __future__ import annotations

from .flusher import OutputFlusher, log_path_for
from .process_runner import OutputBuffer, ProcessRunner, ProcessSpec, RunningProcess
from .scheduler import PollBinding, PollScheduler, PollTask, TaskState

__all__ = [
    "OutputBuffer",
    "OutputFlusher",
    "PollBinding",
    "PollScheduler",
    "PollTask",
    "ProcessRunner",
    "ProcessSpec",
    "RunningProcess",
    "TaskState",
    "log_path_for",
]
