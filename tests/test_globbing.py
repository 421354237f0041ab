"""Tests for path and name glob matching."""

import os
from pathlib import Path

import pytest

from artifact_vault.artifacts.globbing import (
    is_hidden,
    match_name,
    match_path,
    normalize_pattern,
    select_files,
)
from artifact_vault.core.exceptions import ValidationError


# =============================================================================
# Pattern normalization
# =============================================================================


class TestNormalizePattern:
    """Tests for normalize_pattern."""

    def test_strips_leading_dot_slash(self) -> None:
        """Leading ./ and trailing / are dropped."""
        assert normalize_pattern("./dist/") == "dist"

    def test_collapses_separators(self) -> None:
        """Repeated separators and backslashes are normalized."""
        assert normalize_pattern("reports//unit\\*.xml") == "reports/unit/*.xml"

    def test_dot_selects_everything(self) -> None:
        """A bare dot selects the whole workspace."""
        assert normalize_pattern(".") == "**"

    @pytest.mark.parametrize("pattern", ["/etc/passwd", "C:/Windows", "../outside", "dist/../../x", "  "])
    def test_rejects_unsafe_patterns(self, pattern: str) -> None:
        """Absolute, escaping and blank patterns are rejected."""
        with pytest.raises(ValidationError):
            normalize_pattern(pattern)


# =============================================================================
# Matching
# =============================================================================


class TestMatchPath:
    """Tests for path glob matching."""

    def test_star_stays_within_segment(self) -> None:
        """A single star never crosses a directory separator."""
        assert match_path("*.log", "build.log")
        assert not match_path("*.log", "logs/build.log")

    def test_double_star_matches_zero_or_more_directories(self) -> None:
        """A ** segment matches any depth, including none."""
        assert match_path("reports/**/*.xml", "reports/summary.xml")
        assert match_path("reports/**/*.xml", "reports/unit/results.xml")
        assert match_path("reports/**/*.xml", "reports/a/b/c/deep.xml")
        assert not match_path("reports/**/*.xml", "other/summary.xml")

    def test_trailing_double_star(self) -> None:
        """A trailing ** matches everything beneath the prefix."""
        assert match_path("dist/**", "dist/lib/core.so")
        assert not match_path("dist/**", "distribution/file")

    def test_question_mark_and_classes(self) -> None:
        """? matches one character and [..] classes support negation."""
        assert match_path("file?.txt", "file1.txt")
        assert not match_path("file?.txt", "file10.txt")
        assert match_path("file[0-9].txt", "file7.txt")
        assert not match_path("file[!0-9].txt", "file7.txt")
        assert match_path("file[!0-9].txt", "fileA.txt")

    def test_literal_characters_are_escaped(self) -> None:
        """Regex metacharacters in patterns are matched literally."""
        assert match_path("a+b(1).txt", "a+b(1).txt")
        assert not match_path("a.txt", "abtxt")


class TestMatchName:
    """Tests for artifact name globs."""

    def test_name_patterns(self) -> None:
        """Name globs match whole names."""
        assert match_name("bin-*", "bin-ubuntu")
        assert match_name("bin-*", "bin-")
        assert not match_name("bin-*", "my-bin-ubuntu")
        assert match_name("coverage-?", "coverage-1")
        assert not match_name("coverage-?", "coverage-10")

    def test_exact_name_without_metacharacters(self) -> None:
        """A pattern without metacharacters matches only itself."""
        assert match_name("logs", "logs")
        assert not match_name("logs", "logs-2")


class TestIsHidden:
    """Tests for hidden entry detection."""

    def test_any_component(self) -> None:
        """A path is hidden if any component starts with a dot."""
        assert is_hidden(".env")
        assert is_hidden("src/.cache/state")
        assert not is_hidden("src/cache/state")


# =============================================================================
# File selection
# =============================================================================


class TestSelectFiles:
    """Tests for select_files over a workspace."""

    def test_directory_include_adds_contents(self, workspace: Path) -> None:
        """Including a directory includes every file beneath it."""
        selected = select_files(workspace, ["dist"])
        assert list(selected) == ["dist/app.bin", "dist/lib/core.so"]
        assert selected["dist/app.bin"] == (workspace / "dist" / "app.bin").resolve()

    def test_hidden_entries_skipped_by_default(self, workspace: Path) -> None:
        """Dot-files and dot-directories require include_hidden."""
        selected = select_files(workspace, ["**"])
        assert ".env" not in selected
        assert ".cache/state" not in selected
        assert "logs/build.log" in selected

        with_hidden = select_files(workspace, ["**"], include_hidden=True)
        assert ".env" in with_hidden
        assert ".cache/state" in with_hidden

    def test_excludes_apply_after_all_includes(self, workspace: Path) -> None:
        """A later include cannot re-add an excluded file."""
        selected = select_files(
            workspace,
            ["reports/**/*.xml", "reports/**"],
            ["**/*.tmp"],
        )
        assert list(selected) == ["reports/summary.xml", "reports/unit/results.xml"]

    def test_exclude_matching_directory_drops_contents(self, workspace: Path) -> None:
        """Excluding a directory removes everything beneath it."""
        selected = select_files(workspace, ["**"], ["logs", "dist/lib"])
        assert "logs/build.log" not in selected
        assert "dist/lib/core.so" not in selected
        assert "dist/app.bin" in selected

    def test_duplicates_collapse(self, workspace: Path) -> None:
        """Overlapping includes produce each path once."""
        selected = select_files(workspace, ["dist/**", "dist/app.bin", "./dist"])
        assert list(selected) == ["dist/app.bin", "dist/lib/core.so"]

    def test_missing_literal_base_selects_nothing(self, workspace: Path) -> None:
        """A pattern rooted in a missing directory matches nothing."""
        assert select_files(workspace, ["missing/**"]) == {}

    def test_symlink_outside_workspace_skipped(self, workspace: Path, temp_dir: Path) -> None:
        """Symlinks resolving outside the workspace are never selected."""
        secret = temp_dir / "secret.txt"
        secret.write_text("do not upload")
        os.symlink(secret, workspace / "dist" / "leak.txt")

        selected = select_files(workspace, ["dist/**"])
        assert "dist/leak.txt" not in selected

    def test_absolute_pattern_rejected(self, workspace: Path) -> None:
        """Absolute include patterns raise ValidationError."""
        with pytest.raises(ValidationError):
            select_files(workspace, [str(workspace / "dist")])
