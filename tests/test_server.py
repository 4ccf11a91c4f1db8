"""Server 模块测试。

测试 MCP 工具分发：
- 工具 schema
- 各工具的响应内容
- 用户可见错误转换为 <error> 响应
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from cmd_tracker.config import Config
from cmd_tracker.server import ToolDispatcher, create_server
from cmd_tracker.shared.response_formatter import (
    DebugInfo,
    ResponseData,
    ResponseFormatter,
)
from cmd_tracker.supervisor import Supervisor
from cmd_tracker.tool_schema import SUPPORTED_TOOLS, TOOL_DESCRIPTIONS, create_tool_schema

from conftest import FakeHost, FakeProcess, notify_spawn


def text_of(result) -> str:
    assert len(result) == 1
    return result[0].text


def answer_of(result) -> str:
    text = text_of(result)
    start = text.index("<answer>\n") + len("<answer>\n")
    end = text.index("\n  </answer>")
    return text[start:end]


@pytest.fixture
def dispatcher(supervisor: Supervisor) -> ToolDispatcher:
    return ToolDispatcher(supervisor, config=Config(debug=False))


class FakeLauncher:
    """把启动请求转成假进程的启动通知。"""

    def __init__(self, supervisor: Supervisor) -> None:
        self.supervisor = supervisor
        self.processes: list[FakeProcess] = []

    async def __call__(self, command: str, directory: str, provenance: str) -> str:
        proc = FakeProcess()
        self.processes.append(proc)
        return notify_spawn(self.supervisor, proc, command, directory, provenance)


@pytest.fixture
def launcher(supervisor: Supervisor, host: FakeHost) -> FakeLauncher:
    launcher = FakeLauncher(supervisor)
    supervisor.attach_host(host, launcher)
    return launcher


class TestToolSchema:
    """工具 schema 测试。"""

    @pytest.mark.parametrize("tool", SUPPORTED_TOOLS)
    def test_every_tool_has_schema(self, tool: str):
        schema = create_tool_schema(tool)
        assert schema["type"] == "object"
        assert tool in TOOL_DESCRIPTIONS

    def test_unknown_tool(self):
        with pytest.raises(ValueError):
            create_tool_schema("codex")

    def test_create_server(self, supervisor: Supervisor):
        server = create_server(supervisor)
        assert server.name == "cmd-tracker"


class TestResponseFormatter:
    """响应格式化测试。"""

    def test_success(self):
        text = ResponseFormatter().format(ResponseData(answer="ok", item_id="abc"))
        assert text == (
            "<response>\n  <answer>\nok\n  </answer>\n"
            "  <item_id>abc</item_id>\n</response>"
        )

    def test_error(self):
        data = ResponseData(answer="", success=False, error="boom")
        assert "<error>boom</error>" in ResponseFormatter().format(data)

    def test_debug_info_only_in_debug(self):
        data = ResponseData(answer="[]", debug_info=DebugInfo(total_count=3))
        assert "<debug_info>" not in ResponseFormatter().format(data)
        text = ResponseFormatter().format(data, debug=True)
        assert "<total_count>3</total_count>" in text


class TestRunAndList:
    """启动与列表工具测试。"""

    @pytest.mark.asyncio
    async def test_run_command(
        self, dispatcher: ToolDispatcher, launcher: FakeLauncher, log_dir: Path
    ):
        result = await dispatcher.call("run_command", {"command": "make", "directory": "/src"})

        answer = json.loads(answer_of(result))
        item = dispatcher.supervisor.get(answer["id"])
        assert item.name == "make"
        assert answer["log_path"] == str(item.log_path)
        assert Path(answer["log_path"]).parent == log_dir

    @pytest.mark.asyncio
    async def test_run_empty_command(self, dispatcher: ToolDispatcher, launcher: FakeLauncher):
        result = await dispatcher.call("run_command", {"command": "  ", "directory": "/"})
        assert "<error>Empty command</error>" in text_of(result)

    @pytest.mark.asyncio
    async def test_run_without_host(self, log_dir: Path):
        dispatcher = ToolDispatcher(Supervisor(log_dir=log_dir), config=Config())
        result = await dispatcher.call("run_command", {"command": "make", "directory": "/"})
        assert "No process host available" in text_of(result)

    @pytest.mark.asyncio
    async def test_list_with_filters(self, dispatcher: ToolDispatcher, launcher: FakeLauncher):
        await dispatcher.call("run_command", {"command": "make", "directory": "/src"})
        await dispatcher.call("run_command", {"command": "pytest", "directory": "/src"})
        finished = launcher.processes[0]
        finished.exit(0)
        dispatcher.supervisor.scheduler.tick(dispatcher.supervisor.scheduler.get(finished))

        rows = json.loads(answer_of(await dispatcher.call("list_commands", {})))
        assert [r["command"] for r in rows] == ["pytest", "make"]
        assert [r["exit"] for r in rows] == ["--", "0"]

        result = await dispatcher.call("toggle_filter", {"category": "live"})
        assert "Filter live enabled" in text_of(result)
        assert "<filters>live</filters>" in text_of(result)

        result = await dispatcher.call("list_commands", {})
        assert [r["command"] for r in json.loads(answer_of(result))] == ["pytest"]

        await dispatcher.call("toggle_filter", {"category": "live"})
        rows = json.loads(answer_of(await dispatcher.call("list_commands", {"limit": 1})))
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_clear_filters(self, dispatcher: ToolDispatcher):
        await dispatcher.call("toggle_filter", {"category": "command", "value": "make"})
        assert len(dispatcher.filters) == 1

        result = await dispatcher.call("clear_filters", {})

        assert len(dispatcher.filters) == 0
        assert "<filters>all</filters>" in text_of(result)

    @pytest.mark.asyncio
    async def test_bad_filter(self, dispatcher: ToolDispatcher):
        result = await dispatcher.call("toggle_filter", {"category": "exit", "value": "0"})
        assert "Unknown filter category" in text_of(result)


class TestItemTools:
    """针对单个条目的工具测试。"""

    @pytest.mark.asyncio
    async def test_kill(
        self, dispatcher: ToolDispatcher, launcher: FakeLauncher, host: FakeHost
    ):
        await dispatcher.call("run_command", {"command": "sleep 9", "directory": "/"})
        item_id = dispatcher.supervisor.store.list()[0].item_id

        result = await dispatcher.call("kill_command", {"id": item_id})

        assert "Termination requested" in text_of(result)
        assert host.terminated == launcher.processes

    @pytest.mark.asyncio
    async def test_kill_unknown(self, dispatcher: ToolDispatcher):
        result = await dispatcher.call("kill_command", {"id": "nope"})
        text = text_of(result)
        assert "<error>No command with id 'nope'</error>" in text
        assert "<item_id>nope</item_id>" in text

    @pytest.mark.asyncio
    async def test_rerun(self, dispatcher: ToolDispatcher, launcher: FakeLauncher):
        await dispatcher.call(
            "run_command", {"command": "make", "directory": "/src", "mode": "compile"}
        )
        old_id = dispatcher.supervisor.store.list()[0].item_id

        result = await dispatcher.call("rerun_command", {"id": old_id})

        new_id = json.loads(answer_of(result))["id"]
        assert new_id != old_id
        assert dispatcher.supervisor.get(new_id).provenance == "compile"

    @pytest.mark.asyncio
    async def test_output_and_log(self, dispatcher: ToolDispatcher, launcher: FakeLauncher):
        await dispatcher.call("run_command", {"command": "make", "directory": "/src"})
        item_id = dispatcher.supervisor.store.list()[0].item_id
        proc = launcher.processes[0]
        proc.output.write(b"line 1\nline 2\n")

        result = await dispatcher.call("command_output", {"id": item_id, "max_bytes": 7})
        assert answer_of(result) == "line 2\n"

        result = await dispatcher.call("command_log", {"id": item_id})
        assert "No log file" in text_of(result)

        proc.exit(0)
        dispatcher.supervisor.scheduler.tick(dispatcher.supervisor.scheduler.get(proc))

        result = await dispatcher.call("command_output", {"id": item_id})
        assert "No output buffer" in text_of(result)

        answer = answer_of(await dispatcher.call("command_log", {"id": item_id}))
        path, _, content = answer.partition("\n\n")
        assert Path(path) == dispatcher.supervisor.get(item_id).log_path
        assert content == "line 1\nline 2\n"

    @pytest.mark.asyncio
    async def test_missing_argument(self, dispatcher: ToolDispatcher):
        result = await dispatcher.call("kill_command", {})
        assert "<error>" in text_of(result)

    @pytest.mark.asyncio
    async def test_unknown_tool(self, dispatcher: ToolDispatcher):
        result = await dispatcher.call("codex", {})
        assert "Unknown tool 'codex'" in text_of(result)

    @pytest.mark.asyncio
    async def test_debug_info(self, supervisor: Supervisor):
        dispatcher = ToolDispatcher(supervisor, config=Config(debug=True))
        notify_spawn(supervisor, FakeProcess())

        text = text_of(await dispatcher.call("list_commands", {}))

        assert "<total_count>1</total_count>" in text
        assert "<live_count>1</live_count>" in text
