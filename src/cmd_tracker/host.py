"""本地宿主：用 ProcessRunner 启动命令并把生命周期事件送入监督器。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Hashable

from .models import SpawnNotification
from .runtime.process_runner import ProcessRunner, ProcessSpec, RunningProcess
from .supervisor import Supervisor

__all__ = ["LocalHost"]

logger = logging.getLogger(__name__)


class LocalHost:
    """本地命令宿主。

    - launch: 启动命令并发出启动通知
    - request_termination: 终止进程组（监督器的出站终止请求）
    - aclose: 拆除前尽力刷写并终止全部进程
    """

    def __init__(self, supervisor: Supervisor, runner: ProcessRunner | None = None) -> None:
        self.supervisor = supervisor
        self.runner = runner or ProcessRunner()
        supervisor.attach_host(self, self.launch)

    async def launch(self, command: str, directory: str, provenance: str = "shell") -> str:
        """启动命令。

        Returns:
            条目 ID

        Raises:
            FileNotFoundError: 工作目录不存在
            OSError: shell 无法启动
        """
        cwd = Path(directory).expanduser()
        if not cwd.is_dir():
            raise FileNotFoundError(f"Directory not found: {directory}")

        process = await self.runner.spawn(ProcessSpec(command=command, cwd=cwd))
        return self.supervisor.on_spawn(
            SpawnNotification(
                name=command,
                directory=str(cwd),
                output=process.output,
                process_handle=process,
                status_probe=process.poll,
                provenance=provenance,
            )
        )

    def request_termination(self, process_handle: Hashable) -> None:
        if not isinstance(process_handle, RunningProcess):
            logger.warning(f"Cannot terminate foreign process handle {process_handle!r}")
            return
        self.runner.request_termination(process_handle)

    async def aclose(self) -> None:
        """拆除宿主：先刷写每个进程的剩余输出，再终止进程。"""
        for process in list(self.runner.live_processes()):
            self.supervisor.on_teardown(process)
        await self.runner.aclose()
