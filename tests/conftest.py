"""Shared test fixtures for aichat-bridge."""

import json
import os
from datetime import datetime, timezone

import pytest

from aichat_bridge.backends.claude_code import ClaudeCodeProvider
from aichat_bridge.backends.codex import CodexProvider
from aichat_bridge.backends.opencode import OpenCodeProvider
from aichat_bridge.core import AgentType
from aichat_bridge.names import NameOverrideStore
from aichat_bridge.recent import RecentSessionsCache
from aichat_bridge.sessions import SessionService


def _ms(*args) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


def _write_jsonl(path, entries):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(json.dumps(e) for e in entries) + "\n", encoding="utf-8")


def _set_mtime(path, *args):
    ts = datetime(*args, tzinfo=timezone.utc).timestamp()
    os.utime(path, (ts, ts))


@pytest.fixture
def tmp_claude_code_dir(tmp_path):
    """Create a synthetic Claude Code projects directory with realistic JSONL.

    Includes:
    - User text messages
    - Assistant text + tool_use in same entry
    - User tool_result entries
    - Thinking blocks
    - A session_name declaration and an isMeta line
    - file-history-snapshot, progress, summary, result lines (should be skipped)
    - A sub-agent transcript, an empty file and a bookkeeping-only session
    """
    projects = tmp_path / "projects"
    project_dir = projects / "-Users-testuser-dev-myapp"
    project_dir.mkdir(parents=True)

    lines = [
        # 1. Session name declaration (not a message)
        {"type": "system", "subtype": "session_name", "name": "Auth refactor"},
        # 2. Meta line (skipped)
        {
            "type": "user",
            "isMeta": True,
            "message": {"role": "user", "content": "<local-command-caveat>ignore</local-command-caveat>"},
        },
        # 3. User prompt
        {
            "type": "user",
            "message": {"role": "user", "content": [{"type": "text", "text": "Help me refactor the auth module"}]},
            "timestamp": "2025-01-20T10:00:00Z",
            "uuid": "uuid-001",
        },
        # 4. Assistant text + tool_use in same entry
        {
            "type": "assistant",
            "message": {"role": "assistant", "content": [
                {"type": "text", "text": "I'll help you refactor the auth module. Let me start by reading the current code."},
                {"type": "tool_use", "id": "toolu_001", "name": "Read", "input": {"file_path": "/src/auth.ts"}},
            ]},
            "timestamp": "2025-01-20T10:00:30Z",
        },
        # 5. Tool result (appears as user type entry)
        {
            "type": "user",
            "message": {"role": "user", "content": [
                {"type": "tool_result", "tool_use_id": "toolu_001",
                 "content": "export function authenticate(token: string) {\n  return jwt.verify(token);\n}"},
            ]},
            "timestamp": "2025-01-20T10:00:31Z",
        },
        # 6. Assistant with thinking block
        {
            "type": "assistant",
            "message": {"role": "assistant", "content": [
                {"type": "thinking", "thinking": "I need to split this into separate functions."},
                {"type": "text", "text": "I can see the auth module. Let me refactor it into separate concerns."},
                {"type": "tool_use", "id": "toolu_002", "name": "Edit",
                 "input": {"file_path": "/src/auth.ts", "new_content": "refactored code..."}},
            ]},
            "timestamp": "2025-01-20T10:01:00Z",
        },
        # 7. Tool result for Edit
        {
            "type": "user",
            "message": {"role": "user", "content": [
                {"type": "tool_result", "tool_use_id": "toolu_002", "content": "File edited successfully"},
            ]},
            "timestamp": "2025-01-20T10:01:01Z",
        },
        # 8. file-history-snapshot (should be skipped)
        {"type": "file-history-snapshot", "files": [{"path": "/src/auth.ts"}]},
        # 9. User follow-up
        {
            "type": "human",
            "message": {"role": "user", "content": [{"type": "text", "text": "Looks good, now split it into separate files"}]},
            "timestamp": "2025-01-20T10:05:00Z",
        },
        # 10. Assistant with just tool_use (no text)
        {
            "type": "assistant",
            "message": {"role": "assistant", "content": [
                {"type": "tool_use", "id": "toolu_003", "name": "Bash",
                 "input": {"command": "mkdir -p /src/auth/", "description": "Create auth directory"}},
            ]},
            "timestamp": "2025-01-20T10:05:30Z",
        },
        # 11-13. Progress, summary and result entries (should be skipped)
        {"type": "progress", "data": {"type": "hook_progress"}},
        {"type": "summary", "summary": "Refactored auth module into separate files"},
        {"type": "result", "subtype": "success", "num_turns": 3, "cost_usd": 0.12},
        # 14. Tool result with image block
        {
            "type": "user",
            "message": {"role": "user", "content": [
                {"type": "tool_result", "tool_use_id": "toolu_003", "content": [
                    {"type": "text", "text": "Command output:\nDirectory created"},
                    {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "iVBORw0KGgo="}},
                ]},
            ]},
            "timestamp": "2025-01-20T10:05:31Z",
        },
    ]
    session_file = project_dir / "session-001.jsonl"
    _write_jsonl(session_file, lines)
    session_file.write_text(session_file.read_text(encoding="utf-8") + "{not valid json\n", encoding="utf-8")
    _set_mtime(session_file, 2025, 1, 20, 11, 30)

    second = project_dir / "session-002.jsonl"
    _write_jsonl(second, [
        {"type": "user", "message": {"role": "user", "content": "Write tests for the API"},
         "timestamp": "2025-01-21T09:00:00Z"},
        {"type": "assistant", "message": {"role": "assistant", "content": [{"type": "text", "text": "Sure."}]},
         "timestamp": "2025-01-21T09:00:10Z"},
    ])
    _set_mtime(second, 2025, 1, 21, 9, 45)

    # Bookkeeping only: never listed
    _write_jsonl(project_dir / "session-003.jsonl", [
        {"type": "file-history-snapshot", "files": []},
        {"type": "system", "subtype": "init", "session_id": "session-003"},
    ])

    # Sub-agent transcript and an empty file: not sessions
    _write_jsonl(project_dir / "agent-a1b2c3.jsonl", [
        {"type": "user", "message": {"role": "user", "content": "sub-agent prompt"}},
    ])
    (project_dir / "session-empty.jsonl").write_text("", encoding="utf-8")

    return projects


@pytest.fixture
def tmp_opencode_dir(tmp_path):
    """Create a synthetic OpenCode v1.1+ storage directory with parts."""
    storage = tmp_path / "storage"

    # Session
    ses_dir = storage / "session" / "proj1"
    ses_dir.mkdir(parents=True)
    ses_data = {
        "id": "ses_001",
        "version": "1.1.34",
        "title": "Debug API endpoint",
        "directory": "/Users/testuser/dev/api-server",
        "time": {"created": _ms(2025, 1, 22, 8, 0, 0), "updated": _ms(2025, 1, 22, 8, 30, 0)},
    }
    (ses_dir / "ses_001.json").write_text(json.dumps(ses_data), encoding="utf-8")

    # Session without messages: never listed
    empty = {"id": "ses_002", "title": "Abandoned", "directory": "/tmp",
             "time": {"created": _ms(2025, 1, 23, 8, 0, 0), "updated": _ms(2025, 1, 23, 8, 0, 0)}}
    (ses_dir / "ses_002.json").write_text(json.dumps(empty), encoding="utf-8")

    # Messages
    msg_dir = storage / "message" / "ses_001"
    msg_dir.mkdir(parents=True)

    msg1 = {
        "id": "msg_001",
        "sessionID": "ses_001",
        "role": "user",
        "time": {"created": _ms(2025, 1, 22, 8, 0, 0)},
        "summary": {"title": "API 500 error investigation", "diffs": []},
    }
    msg2 = {"id": "msg_002", "sessionID": "ses_001", "role": "assistant",
            "time": {"created": _ms(2025, 1, 22, 8, 0, 30)}}
    msg3 = {"id": "msg_003", "sessionID": "ses_001", "role": "assistant",
            "time": {"created": _ms(2025, 1, 22, 8, 1, 0)}}
    (msg_dir / "msg_001.json").write_text(json.dumps(msg1), encoding="utf-8")
    (msg_dir / "msg_002.json").write_text(json.dumps(msg2), encoding="utf-8")
    (msg_dir / "msg_003.json").write_text(json.dumps(msg3), encoding="utf-8")

    # Parts for msg_001 (user text)
    prt_dir_1 = storage / "part" / "msg_001"
    prt_dir_1.mkdir(parents=True)
    prt1 = {"id": "prt_001", "sessionID": "ses_001", "messageID": "msg_001", "type": "text",
            "text": "Why is the /api/users endpoint returning 500?"}
    (prt_dir_1 / "prt_001.json").write_text(json.dumps(prt1), encoding="utf-8")

    # Parts for msg_002 (assistant text)
    prt_dir_2 = storage / "part" / "msg_002"
    prt_dir_2.mkdir(parents=True)
    prt2_text = {"id": "prt_002", "sessionID": "ses_001", "messageID": "msg_002", "type": "text",
                 "text": "The error is in the database query. Let me check the logs."}
    (prt_dir_2 / "prt_001.json").write_text(json.dumps(prt2_text), encoding="utf-8")

    # Parts for msg_003 (assistant with tool call - v1.1 format)
    prt_dir_3 = storage / "part" / "msg_003"
    prt_dir_3.mkdir(parents=True)
    prt3_step = {"id": "prt_003a", "sessionID": "ses_001", "messageID": "msg_003", "type": "step-start"}
    prt3_tool = {
        "id": "prt_003b",
        "sessionID": "ses_001",
        "messageID": "msg_003",
        "type": "tool",
        "tool": "grep",
        "callID": "call_grep_1",
        "state": {
            "status": "completed",
            "input": {"pattern": "SELECT.*FROM users", "include": "*.ts"},
            "output": "Found 3 matches\nsrc/db.ts:15: SELECT * FROM users WHERE id = $1",
        },
    }
    (prt_dir_3 / "prt_001.json").write_text(json.dumps(prt3_step), encoding="utf-8")
    (prt_dir_3 / "prt_002.json").write_text(json.dumps(prt3_tool), encoding="utf-8")

    return storage


@pytest.fixture
def tmp_opencode_v1_dir(tmp_path):
    """Create a synthetic OpenCode v1.0 storage directory (no parts, summary only)."""
    storage = tmp_path / "storage"

    ses_dir = storage / "session" / "proj_old"
    ses_dir.mkdir(parents=True)
    ses_data = {
        "id": "ses_old_001",
        "version": "1.0.218",
        "title": "Build login page",
        "directory": "/Users/testuser/dev/webapp",
        "time": {"created": _ms(2025, 1, 10, 9, 0, 0), "updated": _ms(2025, 1, 10, 10, 0, 0)},
    }
    (ses_dir / "ses_old_001.json").write_text(json.dumps(ses_data), encoding="utf-8")

    # Messages with summary but NO part directories
    msg_dir = storage / "message" / "ses_old_001"
    msg_dir.mkdir(parents=True)

    msg1 = {
        "id": "msg_old_001",
        "sessionID": "ses_old_001",
        "role": "user",
        "time": {"created": _ms(2025, 1, 10, 9, 0, 0)},
        "summary": {"title": "Build a login page with email and password", "diffs": []},
    }
    msg2 = {
        "id": "msg_old_002",
        "sessionID": "ses_old_001",
        "role": "assistant",
        "time": {"created": _ms(2025, 1, 10, 9, 0, 30)},
        "mode": "code",
        "finish": "stop",
    }
    (msg_dir / "msg_old_001.json").write_text(json.dumps(msg1), encoding="utf-8")
    (msg_dir / "msg_old_002.json").write_text(json.dumps(msg2), encoding="utf-8")

    (storage / "part").mkdir(parents=True)

    return storage


@pytest.fixture
def tmp_codex_dir(tmp_path):
    """Create a synthetic Codex sessions directory with rollout logs.

    Includes a current-format log (session_meta with cwd, response items,
    function calls), a legacy flat log, and a metadata-only log.
    """
    sessions = tmp_path / "sessions"

    current = sessions / "2025" / "01" / "23" / "rollout-2025-01-23T10-00-00-abc.jsonl"
    _write_jsonl(current, [
        {"timestamp": "2025-01-23T10:00:00Z", "type": "session_meta",
         "payload": {"id": "codex-uuid-1", "cwd": "/Users/testuser/dev/cli"}},
        {"timestamp": "2025-01-23T10:00:01Z", "type": "response_item",
         "payload": {"type": "message", "role": "developer", "content": [{"type": "input_text", "text": "sandbox rules"}]}},
        {"timestamp": "2025-01-23T10:00:02Z", "type": "response_item",
         "payload": {"type": "message", "role": "user", "content": [{"type": "input_text", "text": "List the failing tests"}]}},
        {"timestamp": "2025-01-23T10:00:03Z", "type": "event_msg",
         "payload": {"type": "user_message", "message": "List the failing tests"}},
        {"timestamp": "2025-01-23T10:00:04Z", "type": "response_item",
         "payload": {"type": "function_call", "name": "shell", "call_id": "call_1",
                     "arguments": "{\"command\": [\"pytest\", \"-q\"]}"}},
        {"timestamp": "2025-01-23T10:00:05Z", "type": "response_item",
         "payload": {"type": "function_call_output", "call_id": "call_1",
                     "output": "{\"output\": \"2 failed, 10 passed\"}"}},
        {"timestamp": "2025-01-23T10:00:06Z", "type": "response_item",
         "payload": {"type": "message", "role": "assistant",
                     "content": [{"type": "output_text", "text": "Two tests fail in test_parser.py"}]}},
    ])
    _set_mtime(current, 2025, 1, 23, 10, 5)

    legacy = sessions / "2025" / "01" / "20" / "rollout-legacy.jsonl"
    _write_jsonl(legacy, [
        {"session_id": "legacy-1", "timestamp": _ms(2025, 1, 20, 12, 0, 0)},
        {"payload": {"role": "user", "content": "hello codex"}, "timestamp": _ms(2025, 1, 20, 12, 0, 1)},
        {"payload": {"message": {"role": "assistant", "content": [{"type": "text", "text": "hi there"}]}},
         "timestamp": _ms(2025, 1, 20, 12, 0, 2)},
    ])
    _set_mtime(legacy, 2025, 1, 20, 12, 1)

    meta_only = sessions / "2025" / "01" / "24" / "rollout-meta-only.jsonl"
    _write_jsonl(meta_only, [{"session_id": "meta-only-1"}])

    return sessions


@pytest.fixture
def providers(tmp_claude_code_dir, tmp_opencode_dir, tmp_codex_dir, monkeypatch):
    """One provider per agent type, pointed at the synthetic trees."""
    monkeypatch.setenv("AICHAT_CLAUDE_PATH", str(tmp_claude_code_dir))
    monkeypatch.setenv("AICHAT_OPENCODE_PATH", str(tmp_opencode_dir))
    monkeypatch.setenv("AICHAT_CODEX_PATH", str(tmp_codex_dir))
    return {
        AgentType.CLAUDE_CODE: ClaudeCodeProvider(),
        AgentType.OPENCODE: OpenCodeProvider(),
        AgentType.CODEX: CodexProvider(),
    }


@pytest.fixture
def state_dir(tmp_path):
    path = tmp_path / "state"
    path.mkdir()
    return path


@pytest.fixture
def service(providers, state_dir):
    return SessionService(
        providers=providers,
        names=NameOverrideStore(state_dir),
        recent=RecentSessionsCache(state_dir),
        workspace="host",
    )
