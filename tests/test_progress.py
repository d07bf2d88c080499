"""Tests for progress extraction and line buffering"""

from ytdl_orchestrator.progress import LineBuffer, extract_percent


class TestExtractPercent:
    """Test percentage extraction from raw output"""

    def test_single_progress_line(self):
        assert extract_percent("[download]  42.5% of 10MiB") == 42.5

    def test_no_percentage(self):
        assert extract_percent("no percent here") is None
        assert extract_percent("") is None

    def test_last_match_wins(self):
        assert extract_percent("a 10% b 55%") == 55

    def test_buffered_progress_lines(self):
        chunk = "[download]   1.0% of 5MiB\r[download]  12.0% of 5MiB\r[download]  33.3% of 5MiB"
        assert extract_percent(chunk) == 33.3

    def test_integer_and_full_percent(self):
        assert extract_percent("[download] 100% of 3.2MiB in 00:01") == 100.0

    def test_percent_must_follow_number(self):
        assert extract_percent("50 %") is None


class TestLineBuffer:
    """Test carry-over of unterminated output"""

    def test_complete_lines_are_returned(self):
        buffer = LineBuffer()
        assert buffer.feed("first\nsecond\n") == ["first", "second"]
        assert buffer.pending == ""

    def test_split_token_is_not_lost(self):
        buffer = LineBuffer()
        assert buffer.feed("[download]  42") == []
        segments = buffer.feed(".5% of 10MiB\n")
        assert segments == ["[download]  42.5% of 10MiB"]
        assert extract_percent("\n".join(segments)) == 42.5

    def test_carriage_returns_end_segments(self):
        buffer = LineBuffer()
        assert buffer.feed("\r[download]  10.0%\r[download]  20.0%\r[down") == [
            "[download]  10.0%", "[download]  20.0%"
        ]
        assert buffer.pending == "[down"

    def test_flush_discards_carry_over(self):
        buffer = LineBuffer()
        buffer.feed("partial")
        assert buffer.flush() == "partial"
        assert buffer.pending == ""
        assert buffer.feed("\n") == []
