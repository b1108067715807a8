"""
Tests for bounded-prefix listing previews.

Usage:
    pytest tests/test_preview.py -v
"""

from agentlog.preview import (
    ELLIPSIS,
    MAX_PREVIEW_LINES,
    MAX_PROMPT_LENGTH,
    extract_preview,
    truncate,
)


def _pi_user(text):
    return {"type": "message", "message": {"role": "user", "content": [{"type": "text", "text": text}]}}


class TestTruncate:
    def test_short_text_unchanged(self):
        assert truncate("hello") == "hello"

    def test_long_text_gets_ellipsis(self):
        text = "x" * (MAX_PROMPT_LENGTH + 50)
        out = truncate(text)
        assert out == "x" * MAX_PROMPT_LENGTH + ELLIPSIS

    def test_exact_limit_not_truncated(self):
        text = "y" * MAX_PROMPT_LENGTH
        assert truncate(text) == text


class TestPiAgentPreview:
    def test_prompt_and_totals(self, tmp_path, write_jsonl, pi_records):
        path = write_jsonl(tmp_path / "s.jsonl", pi_records)
        preview = extract_preview(path, "pi_agent")

        assert preview.first_prompt == "hello"
        assert preview.totals.input == 10
        assert preview.totals.output == 5
        assert preview.totals.cache_read == 2
        assert preview.totals.cache_write == 1
        assert preview.totals.cost == 0.25

    def test_totals_sum_across_messages(self, tmp_path, write_jsonl, pi_records):
        path = write_jsonl(tmp_path / "s.jsonl", pi_records + [pi_records[2]])
        totals = extract_preview(path, "pi_agent").totals

        assert totals.input == 20
        assert totals.cost == 0.5

    def test_no_usage_means_no_totals(self, tmp_path, write_jsonl, pi_records):
        path = write_jsonl(tmp_path / "s.jsonl", pi_records[:2])
        assert extract_preview(path, "pi_agent").totals is None

    def test_long_prompt_truncated(self, tmp_path, write_jsonl):
        path = write_jsonl(tmp_path / "s.jsonl", [_pi_user("z" * 500)])
        prompt = extract_preview(path, "pi_agent").first_prompt

        assert prompt.endswith(ELLIPSIS)
        assert len(prompt) == MAX_PROMPT_LENGTH + len(ELLIPSIS)

    def test_prompt_beyond_prefix_not_found(self, tmp_path, write_jsonl):
        filler = [{"type": "custom", "n": i} for i in range(MAX_PREVIEW_LINES)]
        path = write_jsonl(tmp_path / "s.jsonl", filler + [_pi_user("late")])
        assert extract_preview(path, "pi_agent").first_prompt is None

    def test_malformed_lines_tolerated(self, tmp_path, write_jsonl):
        path = write_jsonl(
            tmp_path / "s.jsonl",
            ["{broken", '{"type": "message", "message": "not a dict"}', _pi_user("after")],
        )
        assert extract_preview(path, "pi_agent").first_prompt == "after"


class TestOtherFormats:
    def test_factory_human_string_content(self, tmp_path, write_jsonl):
        path = write_jsonl(
            tmp_path / "f.jsonl",
            [{"type": "session_start", "id": "f1"}, {"type": "human", "message": {"content": "fix it"}}],
        )
        preview = extract_preview(path, "factory")

        assert preview.first_prompt == "fix it"
        assert preview.totals is None

    def test_factory_user_message_blocks(self, tmp_path, write_jsonl):
        path = write_jsonl(
            tmp_path / "f.jsonl",
            [{"type": "message", "message": {"role": "user", "content": [{"type": "text", "text": "go"}]}}],
        )
        assert extract_preview(path, "factory").first_prompt == "go"

    def test_claude_skips_tool_result_only_user_lines(self, tmp_path, write_jsonl):
        records = [
            {"type": "user", "message": {"role": "user", "content": [{"type": "tool_result", "content": "x"}]}},
            {"type": "user", "message": {"role": "user", "content": "real question"}},
            {"type": "assistant", "message": {"usage": {"input_tokens": 3, "output_tokens": 4}}},
        ]
        path = write_jsonl(tmp_path / "c.jsonl", records)
        preview = extract_preview(path, "claude_projects")

        assert preview.first_prompt == "real question"
        assert preview.totals.input == 3
        assert preview.totals.output == 4


class TestNotFound:
    def test_unknown_format(self, tmp_path, write_jsonl, pi_records):
        path = write_jsonl(tmp_path / "s.jsonl", pi_records)
        preview = extract_preview(path, "mystery")

        assert preview.first_prompt is None
        assert preview.totals is None

    def test_missing_file(self, tmp_path):
        preview = extract_preview(tmp_path / "gone.jsonl", "pi_agent")

        assert preview.first_prompt is None
        assert preview.totals is None

    def test_binary_garbage(self, tmp_path):
        path = tmp_path / "bin.jsonl"
        path.write_bytes(b"\xff\xfe\x00garbage\n\x80\x81")
        assert extract_preview(path, "claude_projects").first_prompt is None


class TestOddValues:
    def test_non_finite_usage_values_ignored(self, tmp_path, write_jsonl):
        path = write_jsonl(
            tmp_path / "s.jsonl",
            [
                _pi_user("hi"),
                '{"type":"message","message":{"role":"assistant","content":[],"usage":{"input":1e999,"output":3,"cost":{"total":NaN}}}}',
            ],
        )
        preview = extract_preview(path, "pi_agent")

        assert preview.first_prompt == "hi"
        assert preview.totals.input == 0
        assert preview.totals.output == 3
        assert preview.totals.cost == 0.0
