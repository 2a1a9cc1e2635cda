"""Unit tests for cmdb/ingest.py -- target list parsing for bulk scans.

Covers:
- one target per line, blank lines ignored
- comma and semicolon separators on one line
- "#" comments, whole-line and trailing
- case-insensitive de-duplication, first spelling kept, order preserved
- UTF-8 BOM tolerated (file and text)
- load_targets() dispatch: Path, file-name string, inline text, iterable
"""

import pytest

from cmdb.ingest import load_targets, parse_targets, read_target_file


class TestParseTargets:
    def test_one_per_line(self):
        assert parse_targets("WKS-01\nWKS-02\n\n  WKS-03  \n") == ["WKS-01", "WKS-02", "WKS-03"]

    def test_separators(self):
        assert parse_targets("WKS-01, WKS-02;WKS-03\n10.0.0.5") == ["WKS-01", "WKS-02", "WKS-03", "10.0.0.5"]

    def test_comments(self):
        content = "# lab hosts\nWKS-01  # desk 4\n#WKS-02\nWKS-03"
        assert parse_targets(content) == ["WKS-01", "WKS-03"]

    def test_duplicates_case_insensitive(self):
        assert parse_targets("WKS-01\nwks-01\nWKS-02, WKS-01") == ["WKS-01", "WKS-02"]

    def test_bom_in_text(self):
        assert parse_targets("\ufeffWKS-01\nWKS-02") == ["WKS-01", "WKS-02"]

    def test_windows_line_endings(self):
        assert parse_targets("WKS-01\r\nWKS-02\r\n") == ["WKS-01", "WKS-02"]

    def test_empty(self):
        assert parse_targets("") == []
        assert parse_targets("# only a comment\n , ; \n") == []

    def test_failure_report_lines(self):
        content = "# Bulk scan failure report\nWKS-03    # Error: WKS-03: connection refused\n"
        assert parse_targets(content) == ["WKS-03"]


class TestLoadTargets:
    def test_path(self, tmp_path):
        path = tmp_path / "targets.txt"
        path.write_bytes("\ufeffWKS-01\nWKS-02\n".encode("utf-8"))
        assert read_target_file(path) == ["WKS-01", "WKS-02"]
        assert load_targets(path) == (["WKS-01", "WKS-02"], str(path))

    def test_existing_file_name_string(self, tmp_path):
        path = tmp_path / "targets.txt"
        path.write_text("WKS-01\n", encoding="utf-8")
        assert load_targets(str(path)) == (["WKS-01"], str(path))

    def test_inline_text(self):
        assert load_targets("WKS-01, WKS-02") == (["WKS-01", "WKS-02"], "inline")

    def test_single_name_that_is_not_a_file(self):
        assert load_targets("WKS-01") == (["WKS-01"], "inline")

    def test_iterable_entries_may_hold_several_targets(self):
        targets, description = load_targets(["WKS-01", "WKS-02; WKS-03", "wks-01"])
        assert targets == ["WKS-01", "WKS-02", "WKS-03"]
        assert description == "inline"

    def test_missing_path_object_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_targets(tmp_path / "nope.txt")
