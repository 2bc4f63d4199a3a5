"""
Tests for convert_archive: streaming one mbox archive into one HTML file.
"""

import logging
from pathlib import Path

import pytest

import mbox_to_html
from mbox_to_html import (
    HTML_FOOTER,
    HTML_HEADER,
    MessageParseError,
    convert_archive,
    output_path_for,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _read_output(mbox_path):
    with open(output_path_for(str(mbox_path)), encoding="utf-8") as fh:
        return fh.read()


# ---------------------------------------------------------------------------
# output_path_for
# ---------------------------------------------------------------------------

class TestOutputPath:

    def test_appends_html_suffix(self, tmp_path):
        assert output_path_for(str(tmp_path / "box.mbox")) == str(tmp_path / "box.mbox.html")


# ---------------------------------------------------------------------------
# convert_archive
# ---------------------------------------------------------------------------

class TestConvertArchive:

    def test_converts_every_message_in_order(self, mbox_file):
        assert convert_archive(str(mbox_file)) == 3

        content = _read_output(mbox_file)
        assert content.startswith(HTML_HEADER)
        assert content.endswith(HTML_FOOTER)
        assert content.count('class="email-card"') == 3
        assert content.index('id="email-0"') < content.index('id="email-1"') < content.index('id="email-2"')
        assert content.index("First") < content.index("Second") < content.index("Third")

    def test_renders_parsed_fields(self, mbox_file):
        convert_archive(str(mbox_file))
        content = _read_output(mbox_file)
        assert "Alice &lt;alice@example.com&gt;" in content
        assert "Hello From the first message" in content
        assert "<p>Third body</p>" in content

    @pytest.mark.parametrize("chunk_size", [1, 6, 13])
    def test_chunk_size_does_not_change_output(self, tmp_path, mbox_bytes, chunk_size):
        reference = tmp_path / "reference.mbox"
        reference.write_bytes(mbox_bytes)
        convert_archive(str(reference))

        chunked = tmp_path / "chunked.mbox"
        chunked.write_bytes(mbox_bytes)
        convert_archive(str(chunked), chunk_size=chunk_size)

        assert _read_output(chunked) == _read_output(reference)

    def test_empty_archive(self, tmp_path):
        path = tmp_path / "empty.mbox"
        path.write_bytes(b"")
        assert convert_archive(str(path)) == 0
        assert _read_output(path) == HTML_HEADER + HTML_FOOTER

    def test_message_without_delimiter(self, tmp_path):
        path = tmp_path / "single.mbox"
        path.write_bytes(b"Subject: Only one\n\nbody\n")
        assert convert_archive(str(path)) == 1
        assert "Only one" in _read_output(path)

    def test_prints_summary(self, mbox_file, capsys):
        convert_archive(str(mbox_file))
        out = capsys.readouterr().out
        assert "Processed 3 emails." in out
        assert f"Output: {output_path_for(str(mbox_file))}" in out

    def test_quiet_prints_nothing(self, mbox_file, capsys):
        convert_archive(str(mbox_file), quiet=True)
        assert capsys.readouterr().out == ""

    def test_progress_bar(self, mbox_file):
        assert convert_archive(str(mbox_file), show_progress=True) == 3

    def test_periodic_progress_is_logged(self, mbox_file, caplog, monkeypatch):
        caplog.set_level(logging.INFO, logger="mbox_to_html")
        monkeypatch.setattr(mbox_to_html, "PROGRESS_INTERVAL", 2)
        convert_archive(str(mbox_file))
        assert "Processed 2 emails..." in caplog.text


class TestParseFailures:

    def test_bad_message_is_skipped(self, mbox_file, caplog, monkeypatch):
        caplog.set_level(logging.ERROR, logger="mbox_to_html")
        real_parse = mbox_to_html.parse_message

        def flaky_parse(raw):
            if b"Subject: Second" in raw:
                raise MessageParseError("unreadable")
            return real_parse(raw)

        monkeypatch.setattr(mbox_to_html, "parse_message", flaky_parse)

        assert convert_archive(str(mbox_file)) == 2
        content = _read_output(mbox_file)
        assert "First" in content and "Third" in content
        assert "Second" not in content
        assert content.endswith(HTML_FOOTER)
        assert "Error parsing email #1" in caplog.text


class TestOverwritePolicy:

    def test_existing_output_is_skipped(self, mbox_file, capsys):
        output = output_path_for(str(mbox_file))
        with open(output, "w", encoding="utf-8") as fh:
            fh.write("keep me")

        assert convert_archive(str(mbox_file)) == 0
        assert _read_output(mbox_file) == "keep me"
        assert "Use --force to overwrite" in capsys.readouterr().out

    def test_second_run_leaves_output_unchanged(self, mbox_file):
        convert_archive(str(mbox_file))
        first = Path(output_path_for(str(mbox_file))).read_bytes()

        mbox_file.write_bytes(b"Subject: changed\n\nnew\n")
        convert_archive(str(mbox_file))
        assert Path(output_path_for(str(mbox_file))).read_bytes() == first

    def test_force_replaces_output(self, mbox_file):
        output = output_path_for(str(mbox_file))
        with open(output, "w", encoding="utf-8") as fh:
            fh.write("stale")

        assert convert_archive(str(mbox_file), force=True) == 3
        assert _read_output(mbox_file).startswith(HTML_HEADER)


class TestIOErrors:

    def test_write_error_propagates_without_footer(self, mbox_file, monkeypatch):
        def failing_render(message, index):
            raise OSError("disk full")

        monkeypatch.setattr(mbox_to_html, "render_message", failing_render)

        with pytest.raises(OSError, match="disk full"):
            convert_archive(str(mbox_file))
        assert not _read_output(mbox_file).endswith(HTML_FOOTER)

    def test_missing_input_raises(self, tmp_path):
        with pytest.raises(OSError):
            convert_archive(str(tmp_path / "missing.mbox"))


class TestLegacyEncodings:

    def test_8bit_headers_do_not_abort_archive(self, tmp_path):
        path = tmp_path / "legacy.mbox"
        path.write_bytes(
            b"From jose@example.com Mon Jan  1 10:00:00 2024\n"
            b"From: Jos\xe9 <jose@example.com>\n"
            b"Subject: Caf\xe9 r\xe9sum\xe9\n"
            b"\n"
            b"first\n"
            b"\n"
            b"From bob@example.com Tue Jan  2 11:00:00 2024\n"
            b"From: bob@example.com\n"
            b"Subject: Normal\n"
            b"\n"
            b"second\n"
        )

        assert convert_archive(str(path)) == 2
        content = _read_output(path)
        assert "Caf�" in content
        assert "jose@example.com" in content
        assert "Normal" in content
        assert content.endswith(HTML_FOOTER)
