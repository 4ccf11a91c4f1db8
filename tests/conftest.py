"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from cmd_tracker.models import ProcessStatus, SpawnNotification  # noqa: E402
from cmd_tracker.supervisor import Supervisor  # noqa: E402


class FakeOutput:
    """可增长的内存输出流。"""

    def __init__(self, data: bytes = b"") -> None:
        self.data = bytearray(data)

    def write(self, chunk: bytes) -> None:
        self.data.extend(chunk)

    def read_from(self, offset: int) -> bytes:
        return bytes(self.data[offset:])


class FakeProcess:
    """模拟宿主进程：输出流 + 可设置的状态。"""

    def __init__(self) -> None:
        self.output = FakeOutput()
        self.status = ProcessStatus.running()
        self.polls = 0

    def poll(self) -> ProcessStatus:
        self.polls += 1
        return self.status

    def exit(self, code: int = 0) -> None:
        self.status = ProcessStatus.exited(code)

    def signal(self, signum: int) -> None:
        self.status = ProcessStatus.signaled(signum)


class FakeHost:
    """记录终止请求的宿主。"""

    def __init__(self) -> None:
        self.terminated: list[object] = []

    def request_termination(self, process_handle: object) -> None:
        self.terminated.append(process_handle)


def notify_spawn(
    supervisor: Supervisor,
    proc: FakeProcess,
    name: str = "echo hi",
    directory: str = "/tmp",
    provenance: str = "shell",
) -> str:
    """发送启动通知（手动 tick 模式）。"""
    return supervisor.on_spawn(
        SpawnNotification(
            name=name,
            directory=directory,
            output=proc.output,
            process_handle=proc,
            status_probe=proc.poll,
            provenance=provenance,
        ),
        autostart=False,
    )


@pytest.fixture
def log_dir(tmp_path: Path) -> Path:
    """命令输出日志目录。"""
    return tmp_path / "logs"


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def supervisor(log_dir: Path, host: FakeHost) -> Supervisor:
    """带假宿主的监督器。"""
    return Supervisor(log_dir=log_dir, host=host)
