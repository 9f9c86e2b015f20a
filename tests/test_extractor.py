"""Tests for tool-call extraction from streamed model text."""

import pytest

from cowork.proxy.agent.extractor import extract_tool_calls, try_parse_json


def _shape(calls):
    return [(c.method, dict(c.params)) for c in calls]


# ═══════════════════════════════════════════════════════════════
# Function-call syntax
# ═══════════════════════════════════════════════════════════════

class TestFunctionCallSyntax:

    def test_write_then_read_in_order(self):
        text = 'I\'ll do it. write_file("notes.txt", "Hello") then read_file("notes.txt")'
        calls = extract_tool_calls(text)
        assert _shape(calls) == [
            ("write_file", {"path": "notes.txt", "content": "Hello"}),
            ("read_file", {"path": "notes.txt"}),
        ]
        assert all(c.skill == "filesystem" for c in calls)

    def test_all_supported_methods(self):
        text = (
            'write_file("a.txt", "x") append_file("a.txt", "y") read_file("a.txt") '
            'list_files("src") search_files("TODO", "src") delete_file("old.txt")'
        )
        assert [c.method for c in extract_tool_calls(text)] == [
            "write_file", "append_file", "read_file", "list_files", "search_files", "delete_file",
        ]

    def test_search_files_optional_path(self):
        calls = extract_tool_calls('search_files("needle")')
        assert _shape(calls) == [("search_files", {"query": "needle"})]

    def test_single_quotes_and_whitespace(self):
        calls = extract_tool_calls("list_files ( 'docs' )")
        assert _shape(calls) == [("list_files", {"path": "docs"})]

    def test_escapes_in_content(self):
        calls = extract_tool_calls(r'write_file("a.md", "line1\nline2 \"quoted\"")')
        assert calls[0].params["content"] == 'line1\nline2 "quoted"'

    def test_unquoted_content_tail(self):
        calls = extract_tool_calls('write_file("out.txt", plain text here)')
        assert _shape(calls) == [("write_file", {"path": "out.txt", "content": "plain text here"})]

    def test_duplicates_are_kept(self):
        calls = extract_tool_calls('read_file("a") and again read_file("a")')
        assert len(calls) == 2

    def test_method_names_match_case_insensitively(self):
        calls = extract_tool_calls('Write_File("a.txt", "b") then LIST_FILES(".")')
        assert _shape(calls) == [("write_file", {"path": "a.txt", "content": "b"}), ("list_files", {"path": "."})]
        assert calls[0].skill == "filesystem"

    def test_unknown_method_ignored(self):
        assert extract_tool_calls('rm_rf("/") and run_shell("ls")') == []

    def test_method_name_inside_identifier_ignored(self):
        assert extract_tool_calls('my_read_file("x")') == []

    def test_missing_required_argument(self):
        assert extract_tool_calls('write_file("only-path")') == []

    def test_too_many_arguments(self):
        assert extract_tool_calls('read_file("a", "b")') == []

    def test_empty_and_none(self):
        assert extract_tool_calls("") == []
        assert extract_tool_calls(None) == []

    def test_unclosed_call_not_extracted(self):
        assert extract_tool_calls('write_file("a.txt", "Hel') == []

    def test_malformed_call_does_not_hide_later_ones(self):
        calls = extract_tool_calls('read_file(42) then list_files(".")')
        assert _shape(calls) == [("list_files", {"path": "."})]


# ═══════════════════════════════════════════════════════════════
# Tagged JSON syntax
# ═══════════════════════════════════════════════════════════════

class TestTaggedSyntax:

    def test_tagged_block(self):
        text = '<tool_call>{"name": "read_file", "arguments": {"path": "README.md"}}</tool_call>'
        assert _shape(extract_tool_calls(text)) == [("read_file", {"path": "README.md"})]

    def test_tagged_name_case_insensitive(self):
        text = '<tool_call>{"name": "Read_File", "arguments": {"path": "a"}}</tool_call>'
        assert _shape(extract_tool_calls(text)) == [("read_file", {"path": "a"})]

    def test_function_wrapper_with_string_arguments(self):
        text = (
            '<tool_call>{"function": {"name": "write_file", '
            '"arguments": "{\\"path\\": \\"a.txt\\", \\"content\\": \\"hi\\"}"}}</tool_call>'
        )
        assert _shape(extract_tool_calls(text)) == [("write_file", {"path": "a.txt", "content": "hi"})]

    def test_trailing_comma_repaired(self):
        text = '<tool_call>{"name": "list_files", "arguments": {"path": "src",},}</tool_call>'
        assert _shape(extract_tool_calls(text)) == [("list_files", {"path": "src"})]

    def test_mixed_syntaxes_ordered_by_position(self):
        text = (
            'list_files("a") '
            '<tool_call>{"name": "read_file", "arguments": {"path": "b"}}</tool_call> '
            'delete_file("c")'
        )
        assert [c.method for c in extract_tool_calls(text)] == ["list_files", "read_file", "delete_file"]

    def test_unknown_tagged_tool_ignored(self):
        text = '<tool_call>{"name": "execute", "arguments": {"command": "ls"}}</tool_call>'
        assert extract_tool_calls(text) == []

    def test_try_parse_json_rejects_non_objects(self):
        assert try_parse_json("[1, 2]") is None
        assert try_parse_json("not json") is None
        assert try_parse_json("{'a': 1}") == {"a": 1}


# ═══════════════════════════════════════════════════════════════
# Streaming properties
# ═══════════════════════════════════════════════════════════════

class TestPrefixBehaviour:

    TEXT = (
        'Plan:\nwrite_file("notes.txt", "Hello, world") '
        'then <tool_call>{"name": "read_file", "arguments": {"path": "notes.txt"}}</tool_call> '
        "and finally list_files('.')"
    )

    def test_calls_found_in_prefix_survive_extension(self):
        previous = []
        for end in range(len(self.TEXT) + 1):
            current = _shape(extract_tool_calls(self.TEXT[:end]))
            # Every call from the shorter prefix is still there, in order
            it = iter(current)
            assert all(any(call == c for c in it) for call in previous)
            previous = current
        assert [m for m, _ in previous] == ["write_file", "read_file", "list_files"]

    @pytest.mark.parametrize("text", [
        'write_file("a", "b")',
        'no calls at all',
        '<tool_call>{"name": "list_files", "arguments": {"path": "x"}}</tool_call>',
    ])
    def test_deterministic(self, text):
        assert extract_tool_calls(text) == extract_tool_calls(text)
