#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""
Test script for report rendering.

This script validates:
- Per-repository release notes sections
- Contributor and commit list caps
- Failure sections and the processing summary
- JSON report output
"""

import datetime
import json
import re
import shutil
import sys
import tempfile
from pathlib import Path

# Add the project root to Python path to import our module
sys.path.insert(0, str(Path(__file__).parent))

try:
    from generate_release_notes import (
        DEFAULT_CONFIG,
        ActivitySummary,
        AnalysisWindow,
        AnalyzerError,
        CommitRecord,
        ErrorKind,
        ReportRenderer,
        RepositoryResult,
        compute_success_rate,
        deep_merge_dicts,
        rank_contributors,
        setup_logging,
    )
except ImportError as e:
    print(f"ERROR: Failed to import from generate_release_notes.py: {e}")
    print("Make sure generate_release_notes.py is in the same directory as this test script.")
    sys.exit(1)

NOW = datetime.datetime(2025, 6, 15, 12, 0, 0, tzinfo=datetime.timezone.utc)
WINDOW = AnalysisWindow.last_days(7, now=NOW)


def make_renderer(**report_overrides):
    config = deep_merge_dicts(DEFAULT_CONFIG, {"report": report_overrides})
    return ReportRenderer(config, setup_logging("DEBUG", False))


def make_commit(index, author, added=1, deleted=0):
    return CommitRecord(
        short_hash=f"{index:08x}",
        message=f"Change number {index}",
        author=author,
        date=NOW - datetime.timedelta(hours=index),
        lines_added=added,
        lines_deleted=deleted,
    )


def make_summary(commits, repository="https://github.com/acme/widget"):
    counts = {}
    for commit in commits:
        counts[commit.author] = counts.get(commit.author, 0) + 1
    latest = commits[0] if commits else make_commit(999, "Old Timer")
    return ActivitySummary(
        repository=repository,
        branch="main",
        latest_commit=latest,
        window=WINDOW,
        commits=commits,
        contributors=rank_contributors(counts),
        total_lines_added=sum(c.lines_added for c in commits),
        total_lines_deleted=sum(c.lines_deleted for c in commits),
    )


def test_render_summary_sections():
    """Test the main blocks of a repository section."""
    print("Testing repository section rendering...")

    commits = [make_commit(1, "Alice", 5, 2), make_commit(2, "Bob", 3, 1), make_commit(3, "Alice", 0, 4)]
    text = make_renderer().render_summary(make_summary(commits))

    assert "Repository: https://github.com/acme/widget" in text
    assert "Branch: main" in text
    assert "-" * 80 in text
    assert "Analysis Start: 2025-06-08 12:00:00" in text
    assert "Analysis End: 2025-06-15 12:00:00" in text
    assert "=== LATEST COMMIT INFORMATION ===" in text
    assert "Hash: 00000001" in text
    assert "Total Commits: 3" in text
    assert "Total Lines Changed: 15" in text
    assert "Active Contributors: 2" in text
    assert "1. Alice (2 commits)" in text
    assert "2. Bob (1 commit)" in text
    assert "- Change number 2 (00000002) by Bob on 2025-06-15 10:00:00" in text
    assert "Showing first" not in text

    print("  ✅ Repository section renders correctly")


def test_contributor_order_round_trip():
    """Test that rendered contributor lines keep the ranking order."""
    print("Testing contributor order round trip...")

    authors = ["Dana", "Eve", "Dana", "Finn", "Eve", "Dana", "Gus", "Hal", "Ivy"]
    commits = [make_commit(i + 1, author) for i, author in enumerate(authors)]
    summary = make_summary(commits)
    text = make_renderer().render_summary(summary)

    rendered = re.findall(r"^(\d+)\. (.+) \((\d+) commits?\)$", text, re.MULTILINE)
    expected = [(str(c.rank), c.author, str(c.commit_count)) for c in summary.contributors[:5]]
    assert rendered == expected, f"{rendered} != {expected}"
    assert [name for _, name, _ in rendered] == ["Dana", "Eve", "Finn", "Gus", "Hal"]
    assert "Ivy" not in "".join(line for line in text.splitlines() if re.match(r"^\d+\. ", line))

    print("  ✅ Contributor order survives rendering")


def test_commit_list_truncation():
    """Test the commit cap and the truncation notice."""
    print("Testing commit list truncation...")

    commits = [make_commit(i + 1, "Alice") for i in range(60)]
    text = make_renderer().render_summary(make_summary(commits))
    assert "(Showing first 50 of 60 commits)" in text
    assert "Change number 50 " in text
    assert "Change number 51 " not in text

    text = make_renderer(max_commits=10, max_contributors=1).render_summary(make_summary(commits))
    assert "(Showing first 10 of 60 commits)" in text

    print("  ✅ Commit list truncation works correctly")


def test_zero_commit_section():
    """Test the no-commits section."""
    print("Testing zero commit section...")

    text = make_renderer().render_summary(make_summary([]))
    assert "Total Commits: 0" in text
    assert "=== NO COMMITS IN THIS PERIOD ===" in text
    assert "No commits in this period." in text
    assert "=== TOP CONTRIBUTORS ===" not in text
    assert "Message: Change number 999" in text, "Latest commit is shown even when idle"

    print("  ✅ Zero commit section renders correctly")


def test_narrative_block():
    """Test that a narrative is appended when present."""
    print("Testing narrative block...")

    summary = make_summary([make_commit(1, "Alice")])
    summary.narrative = "## Highlights\n- Faster widgets"
    text = make_renderer().render_summary(summary)
    assert "=== RELEASE NOTES NARRATIVE ===" in text
    assert "- Faster widgets" in text

    print("  ✅ Narrative block renders correctly")


def test_render_failure():
    """Test the failure section for a repository."""
    print("Testing failure rendering...")

    error = AnalyzerError(
        ErrorKind.VERSION_CONTROL,
        "failed to clone repository",
        RuntimeError("authentication required"),
        {"repository": "https://github.com/acme/private"},
    )
    text = make_renderer().render_failure("https://github.com/acme/private", error)
    assert "Repository: https://github.com/acme/private" in text
    assert "=== ERROR PROCESSING REPOSITORY ===" in text
    assert "Error Kind: VERSION_CONTROL_ERROR" in text
    assert "failed to clone repository: authentication required" in text
    assert "Context: repository=https://github.com/acme/private" in text

    text = make_renderer().render_failure("https://github.com/acme/x", ValueError("odd"))
    assert "Error Kind: UNKNOWN_ERROR" in text

    print("  ✅ Failure rendering works correctly")


def test_run_summary_counts():
    """Test the processing summary for a mixed run and an empty run."""
    print("Testing run summary...")

    renderer = make_renderer()
    results = [
        RepositoryResult(
            f"https://github.com/acme/ok{i}",
            summary=make_summary([make_commit(1, "A")], f"https://github.com/acme/ok{i}"),
        )
        for i in range(3)
    ]
    results.insert(1, RepositoryResult(
        "https://github.com/acme/bad1",
        error=AnalyzerError(ErrorKind.NETWORK, "failed to download index file"),
    ))
    results.append(RepositoryResult(
        "https://github.com/acme/bad2",
        error=AnalyzerError(ErrorKind.VERSION_CONTROL, "branch not found"),
    ))

    text = renderer.render_run(results, generated_at=NOW)
    assert text.startswith("Release Notes Generated on: 2025-06-15 12:00:00")
    assert "Total Repositories: 5" in text
    assert "Successfully Processed: 3" in text
    assert "Failed: 2" in text
    assert "Success Rate: 60.0%" in text

    # Sections follow input order
    positions = [text.index(f"Repository: {r.repository}\n") for r in results]
    assert positions == sorted(positions)

    empty = renderer.render_run([], generated_at=NOW)
    assert "Total Repositories: 0" in empty
    assert "Success Rate: 0.0%" in empty
    assert compute_success_rate(0, 0) == 0.0

    print("  ✅ Run summary works correctly")


def test_json_report():
    """Test the canonical JSON report."""
    print("Testing JSON report...")

    renderer = make_renderer()
    results = [
        RepositoryResult("https://github.com/acme/ok", summary=make_summary([make_commit(1, "Alice", 2, 1)])),
        RepositoryResult(
            "https://github.com/acme/bad",
            error=AnalyzerError(ErrorKind.TIMEOUT, "git operation timed out"),
        ),
    ]
    data = renderer.build_run_data(results, generated_at=NOW)
    assert data["summary"] == {
        "total_repositories": 2,
        "succeeded": 1,
        "failed": 1,
        "success_rate": 50.0,
    }
    assert data["repositories"][0]["total_lines_changed"] == 3
    assert data["errors"][0]["kind"] == "TIMEOUT_ERROR"
    assert data["errors"][0]["repository"] == "https://github.com/acme/bad"

    temp_dir = Path(tempfile.mkdtemp())
    try:
        output_path = temp_dir / "report.json"
        renderer.render_json_report(data, output_path)
        with open(output_path, encoding="utf-8") as f:
            loaded = json.load(f)
        assert loaded["summary"]["failed"] == 1
        assert loaded["repositories"][0]["contributors"][0]["author"] == "Alice"
    finally:
        shutil.rmtree(temp_dir)

    print("  ✅ JSON report works correctly")


def run_all_tests():
    """Run all report rendering tests."""
    print("🧪 Running Report Renderer Tests for Catalog Release Notes")
    print("-" * 60)

    tests = [
        test_render_summary_sections,
        test_contributor_order_round_trip,
        test_commit_list_truncation,
        test_zero_commit_section,
        test_narrative_block,
        test_render_failure,
        test_run_summary_counts,
        test_json_report,
    ]

    passed = 0
    failed = 0

    for test_func in tests:
        try:
            test_func()
            passed += 1
        except Exception as e:
            print(f"  ❌ {test_func.__name__} failed: {e}")
            failed += 1
            import traceback
            traceback.print_exc()

    print("-" * 60)
    print(f"📊 Test Results: {passed} passed, {failed} failed")

    if failed == 0:
        print("🎉 All report renderer tests passed!")
        return True
    else:
        print("💥 Some tests failed.")
        return False


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
