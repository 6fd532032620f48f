"""Unit tests for the lifecycle log parser."""

from datetime import datetime

from agent_monitor.log_parser import (
    log_filename,
    parse_block,
    parse_log,
    read_log_file,
    session_id_from_filename,
)


def test_parse_log_splits_blocks_in_file_order(make_block):
    text = (
        make_block("SessionStart", "2026-01-14 10:00:00", Project="/w/api", Source="startup (startup/resume/clear)", PID="4242")
        + make_block("UserPromptSubmit", "2026-01-14 10:00:05", Prompt="add tests...")
        + make_block("Stop", "2026-01-14 10:02:00")
    )

    blocks = parse_log(text)

    assert [b.event_type for b in blocks] == ["SessionStart", "UserPromptSubmit", "Stop"]
    assert blocks[0].timestamp == datetime(2026, 1, 14, 10, 0, 0)
    assert blocks[0].get("Project") == "/w/api"
    assert blocks[0].get("PID") == "4242"
    assert blocks[0].keyword("Source") == "startup"
    assert blocks[1].get("Prompt") == "add tests..."


def test_keys_may_contain_spaces():
    block = parse_block("[2026-01-14 10:00:00] EVENT: Stop\n  Session ID: abc-1\n")
    assert block.get("Session ID") == "abc-1"


def test_empty_and_whitespace_segments_are_discarded():
    assert parse_log("") == []
    assert parse_log("---\n   \n---\n\n") == []


def test_delimiter_must_be_its_own_line():
    text = "[2026-01-14 10:00:00] EVENT: UserPromptSubmit\n  Prompt: before---after\n---\n"
    blocks = parse_log(text)
    assert len(blocks) == 1
    assert blocks[0].get("Prompt") == "before---after"


def test_first_timestamp_wins_in_malformed_block():
    text = (
        "[2026-01-14 10:00:00] EVENT: Stop\n"
        "[2026-01-14 11:00:00] EVENT: Stop\n"
    )
    assert parse_block(text).timestamp == datetime(2026, 1, 14, 10, 0, 0)


def test_unparseable_timestamp_is_none():
    block = parse_block("[yesterday-ish] EVENT: Stop\n")
    assert block.timestamp is None
    assert block.event_type == "Stop"


def test_subagent_stop_is_not_stop():
    block = parse_block("[2026-01-14 10:00:00] EVENT: SubagentStop\n")
    assert block.event_type == "SubagentStop"


def test_block_without_event_marker_keeps_fields():
    block = parse_block("garbage line\n  Project: /w/api\n")
    assert block.event_type == ""
    assert block.get("Project") == "/w/api"


def test_first_field_occurrence_wins():
    text = (
        "[2026-01-14 10:00:00] EVENT: UserPromptSubmit\n"
        "  Project: /w/api\n"
        "  Prompt: rename things\n"
        "Project: /somewhere/else\n"
    )
    block = parse_block(text)
    assert block.get("Project") == "/w/api"
    assert block.get("Prompt") == "rename things"


def test_field_value_keeps_inner_colons():
    block = parse_block("[2026-01-14 10:00:00] EVENT: UserPromptSubmit\n  Prompt: note: use http://x\n")
    assert block.get("Prompt") == "note: use http://x"


def test_keyword_of_missing_field_is_empty():
    block = parse_block("[2026-01-14 10:00:00] EVENT: PreCompact\n")
    assert block.keyword("Trigger") == ""


def test_read_log_file_replaces_invalid_bytes(tmp_path):
    path = tmp_path / "session-x.log"
    path.write_bytes(b"[2026-01-14 10:00:00] EVENT: UserPromptSubmit\n  Prompt: caf\xff\xfe\n---\n")

    text = read_log_file(path)
    blocks = parse_log(text)

    assert "�" in text
    assert blocks[0].event_type == "UserPromptSubmit"
    assert blocks[0].get("Prompt").startswith("caf")


def test_session_id_from_filename():
    assert session_id_from_filename("session-abc-123.log") == "abc-123"
    assert session_id_from_filename("session-.log") is None
    assert session_id_from_filename("all-events.jsonl") is None
    assert session_id_from_filename("session-abc.log.bak") is None
    assert session_id_from_filename(log_filename("xyz")) == "xyz"


def test_prompt_quoting_the_event_marker_is_kept():
    text = (
        "[2026-01-14 10:00:00] EVENT: UserPromptSubmit\n"
        "  Project: /w/api\n"
        "  Prompt: why is EVENT: Stop not parsed...\n"
    )
    block = parse_block(text)
    assert block.event_type == "UserPromptSubmit"
    assert block.get("Prompt") == "why is EVENT: Stop not parsed..."


def test_marker_inside_a_value_is_not_a_header():
    block = parse_block("  Prompt: grep for EVENT: Stop\n")
    assert block.event_type == ""
    assert block.get("Prompt") == "grep for EVENT: Stop"


def test_block_with_stop_and_subagent_stop_headers_is_not_stop():
    text = (
        "[2026-01-14 10:00:00] EVENT: Stop\n"
        "[2026-01-14 10:00:00] EVENT: SubagentStop\n"
    )
    assert parse_block(text).event_type == "SubagentStop"
