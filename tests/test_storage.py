"""Tests for workspace file access, execution wrappers and error cleanup."""

from pathlib import Path

from aichat_bridge.errors import format_error_message
from aichat_bridge.execution import ContainerExecutor, ExecResult, Executor
from aichat_bridge.storage import ContainerFS, LocalFS


class RecordingExecutor(Executor):
    """Returns canned results keyed by the command name."""

    def __init__(self, results=None):
        self.results = results or {}
        self.calls = []

    def run(self, argv, user=None):
        self.calls.append((argv, user))
        return self.results.get(argv[0], ExecResult("", "", 0))


class TestLocalFS:
    def test_scan_exact_depth(self, tmp_path):
        (tmp_path / "a").mkdir()
        (tmp_path / "a" / "b").mkdir()
        (tmp_path / "top.jsonl").write_text("x")
        (tmp_path / "a" / "one.jsonl").write_text("x")
        (tmp_path / "a" / "b" / "two.jsonl").write_text("x")

        fs = LocalFS()
        assert [s.path.name for s in fs.scan(tmp_path, "*.jsonl", depth=2)] == ["one.jsonl"]
        assert len(fs.scan(tmp_path, "*.jsonl")) == 3

    def test_scan_missing_root(self, tmp_path):
        assert LocalFS().scan(tmp_path / "missing", "*") == []

    def test_grep_counts_case_insensitively(self, tmp_path):
        (tmp_path / "a.txt").write_text("Auth auth AUTH")
        (tmp_path / "b.txt").write_text("nothing here")
        hits = LocalFS().grep([tmp_path, tmp_path / "missing"], "auth")
        assert hits == [(tmp_path / "a.txt", 3)]

    def test_grep_is_literal(self, tmp_path):
        (tmp_path / "a.txt").write_text("calls foo(bar) here")
        assert LocalFS().grep([tmp_path], "foo(bar)") == [(tmp_path / "a.txt", 1)]
        assert LocalFS().grep([tmp_path], ".*") == []

    def test_remove(self, tmp_path):
        target = tmp_path / "x.json"
        target.write_text("{}")
        fs = LocalFS()
        assert fs.remove(target) is None
        assert fs.remove(target) == "File not found"

    def test_read_first_line(self, tmp_path):
        target = tmp_path / "log.jsonl"
        target.write_text('{"id": 1}\n{"id": 2}\n')
        assert LocalFS().read_first_line(target) == '{"id": 1}'
        assert LocalFS().read_first_line(tmp_path / "none") is None


class TestContainerFS:
    def test_scan_parses_find_output(self):
        output = "/home/w/.codex/sessions/b.jsonl\t1700000000.5\t120\n" \
                 "/home/w/.codex/sessions/a.jsonl\t1600000000.0\t0\n" \
                 "garbage line\n"
        executor = RecordingExecutor({"find": ExecResult(output, "", 0)})
        fs = ContainerFS(executor, user="w")

        stats = fs.scan(Path("/home/w/.codex/sessions"), "*.jsonl", depth=1)
        assert [(s.path.name, s.mtime, s.size) for s in stats] == [
            ("a.jsonl", 1600000000.0, 0),
            ("b.jsonl", 1700000000.5, 120),
        ]
        argv, user = executor.calls[0]
        assert argv[:6] == ["find", "/home/w/.codex/sessions", "-mindepth", "1", "-maxdepth", "1"]
        assert user == "w"

    def test_scan_missing_root(self):
        executor = RecordingExecutor({"find": ExecResult("", "No such file or directory", 1)})
        assert ContainerFS(executor).scan(Path("/nope"), "*.json") == []

    def test_read_text_failure(self):
        executor = RecordingExecutor({"cat": ExecResult("", "cat: x: Permission denied", 1)})
        assert ContainerFS(executor).read_text(Path("/x")) is None

    def test_grep_uses_fixed_string_search(self):
        output = "/data/s1.jsonl:4\n/data/dir:with:colons/s2.jsonl:1\n"
        executor = RecordingExecutor({"rg": ExecResult(output, "", 0)})
        hits = ContainerFS(executor).grep([Path("/data")], "a.b")
        assert hits == [(Path("/data/s1.jsonl"), 4), (Path("/data/dir:with:colons/s2.jsonl"), 1)]
        argv, _ = executor.calls[0]
        assert argv[:4] == ["rg", "-c", "-i", "-F"]
        assert "a.b" in argv

    def test_remove_missing_file(self):
        executor = RecordingExecutor({"test": ExecResult("", "", 1)})
        assert ContainerFS(executor).remove(Path("/gone.json")) == "File not found"


class TestContainerExecutor:
    def test_wrap(self):
        executor = ContainerExecutor("box", default_user="workspace")
        assert executor.wrap(["ls", "-la"]) == ["docker", "exec", "-u", "workspace", "box", "ls", "-la"]
        assert executor.wrap(["claude"], user="root", workdir="/src", interactive=True) == [
            "docker", "exec", "-i", "-u", "root", "-w", "/src", "box", "claude",
        ]


class TestFormatErrorMessage:
    def test_strips_js_stack(self):
        message = "connect ECONNREFUSED 127.0.0.1:4096\n    at TCPConnectWrap.afterConnect (node:net:1555:16)"
        assert format_error_message(message, "OpenCode") == "Connect ECONNREFUSED 127.0.0.1:4096."

    def test_strips_exception_prefix(self):
        assert format_error_message(RuntimeError("Error: model not found!"), "Claude Code") == "Model not found!"

    def test_generic_fallback(self):
        assert format_error_message(None, "Claude Code") == "Claude Code failed. Please try again."
        assert format_error_message("", "OpenCode") == "OpenCode failed. Please try again."
        assert format_error_message("undefined is not a function", "OpenCode") == "OpenCode failed. Please try again."
