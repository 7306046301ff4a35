from indigo.models import CreateIntent, LogWorkIntent
from indigo.parser import CommandParser, parse_duration


parser = CommandParser()


def test_legacy_create_line_becomes_one_intent():
    parsed = parser.parse("CREATE: project=SETI | summary=Fix login bug | type=Bug")

    assert len(parsed.intents) == 1
    intent = parsed.intents[0]
    assert isinstance(intent, CreateIntent)
    assert intent.fields == {"project": "SETI", "summary": "Fix login bug", "type": "Bug"}
    assert parsed.commands[0].tool == "create_issue"
    assert parsed.commands[0].arguments == {"project": "SETI", "summary": "Fix login bug", "type": "Bug"}


def test_malformed_action_does_not_block_the_next_line():
    text = (
        "ACTION: {not valid json\n"
        'ACTION: {"tool": "search_issues", "arguments": {"jql": "project = SETI"}}'
    )
    parsed = parser.parse(text)

    assert parsed.decode_failures == 1
    assert len(parsed.actions) == 1
    assert parsed.actions[0].tool == "search_issues"
    assert parsed.actions[0].arguments == {"jql": "project = SETI"}


def test_action_payload_shapes():
    assert parser.decode_action('{"tool": "get_transitions", "args": {"issueKey": "SETI-1"}}').arguments == {
        "issueKey": "SETI-1"
    }
    assert parser.decode_action('{"tool": "search_issues"}').arguments == {}
    assert parser.decode_action('["search_issues"]') is None
    assert parser.decode_action('{"arguments": {}}') is None
    assert parser.decode_action('{"tool": "x", "arguments": "jql"}') is None


def test_structured_actions_win_over_legacy_lines():
    text = (
        "Let me look that up.\n"
        "JQL: project = SETI\n"
        'ACTION: {"tool": "get_transitions", "arguments": {"issueKey": "SETI-1"}}'
    )
    parsed = parser.parse(text)

    assert parsed.uses_structured_dialect
    assert len(parsed.intents) == 1
    assert [a.tool for a in parsed.commands] == ["get_transitions"]
    assert parsed.narration == "Let me look that up."


def test_legacy_commands_keep_parse_order():
    text = (
        "JQL: assignee = currentUser()\n"
        "ASSIGN: SETI-1 | ana@example.com\n"
        "LOG: SETI-1 | 1h 30m\n"
        "COMMENT: SETI-1 | Fixed in build 7 | see CI"
    )
    commands = parser.parse(text).commands

    assert [c.tool for c in commands] == ["search_issues", "assign_issue", "log_work", "add_comment"]
    assert commands[2].arguments == {"issueKey": "SETI-1", "timeSeconds": 5400}
    assert commands[3].arguments["comment"] == "Fixed in build 7 | see CI"


def test_wrong_argument_count_is_skipped():
    text = (
        "DELETE: SETI-1 | SETI-2\n"
        "ASSIGN: SETI-1\n"
        "LINK: SETI-1 | SETI-2\n"
        "LOG: SETI-1 | soon\n"
        "DETAIL: SETI-3"
    )
    parsed = parser.parse(text)

    assert parsed.skipped_lines == 4
    assert [c.tool for c in parsed.commands] == ["show_issue_detail"]
    # recognized lines never leak into narration, even when skipped
    assert parsed.narration == ""


def test_extra_parts_tolerated_for_pairs_and_links():
    parsed = parser.parse("WATCH: SETI-1 | bo@example.com | extra\nLINK: SETI-1 | SETI-2 | Blocks | x")

    assert [c.tool for c in parsed.commands] == ["add_watcher", "link_issues"]
    assert parsed.commands[1].arguments == {"issueKey": "SETI-1", "linkedIssue": "SETI-2", "linkType": "Blocks"}


def test_log_with_time_key():
    intent = parser.parse("LOG: SETI-2 | time=2h").intents[0]
    assert isinstance(intent, LogWorkIntent)
    assert intent.time_seconds == 7200


def test_status_and_select_lines():
    parsed = parser.parse(
        "STATUS: SETI-1 | Done | resolution=Won't Do\n"
        "SELECT_CLASSIFICATION: 2\n"
        "SELECT_PCM: SETI-1 | 1\n"
        "SPRINT: current | project=SETI"
    )
    commands = parsed.commands

    assert commands[0].arguments == {"issueKey": "SETI-1", "newStatus": "Done", "fields": {"resolution": "Won't Do"}}
    assert commands[1].arguments == {"issueKey": "", "optionIndex": 2}
    assert commands[2].arguments == {"issueKey": "SETI-1", "optionIndex": 1}
    assert commands[3].arguments == {"query": "current", "projectKey": "SETI"}


def test_backtick_wrapped_commands_are_recognized():
    parsed = parser.parse("`DETAIL: SETI-1`")
    assert [c.tool for c in parsed.commands] == ["show_issue_detail"]


def test_unknown_keyword_stays_in_narration():
    parsed = parser.parse("NOTE: nothing to do here")
    assert parsed.commands == []
    assert parsed.narration == "NOTE: nothing to do here"


def test_completion_detected_regardless_of_actions():
    text = 'All set.\nACTION: {"tool": "delete_issue", "arguments": {"issueKey": "SETI-9"}}\nTask complete.'
    parsed = parser.parse(text)

    assert parsed.is_complete
    assert len(parsed.actions) == 1
    assert not parser.parse("Searching now.").is_complete


def test_custom_marker_and_phrases():
    custom = CommandParser(action_marker="DO:", completion_phrases=["finito"])
    parsed = custom.parse('DO: {"tool": "search_issues", "arguments": {"jql": "x"}}\nFINITO')

    assert [a.tool for a in parsed.actions] == ["search_issues"]
    assert parsed.is_complete


def test_narration_collapses_blank_runs():
    parsed = parser.parse("First.\n\n\n\nJQL: project = SETI\n\nSecond.")
    assert parsed.narration == "First.\n\nSecond."


def test_parse_duration():
    assert parse_duration("2h") == 7200
    assert parse_duration("1h 30m") == 5400
    assert parse_duration("1.5h") == 5400
    assert parse_duration("1d") == 8 * 3600
    assert parse_duration("45") is None
    assert parse_duration("") is None
