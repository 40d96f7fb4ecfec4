import pytest

from app.utils.path_matcher import compile_pattern, match, match_any, normalize_path


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("/loan-workflow/submit", "/loan-workflow/submit"),
        ("loan-workflow/submit/", "/loan-workflow/submit"),
        ("//loan-workflow///queue//marketing", "/loan-workflow/queue/marketing"),
        ("/notifications?unread_only=true", "/notifications"),
        ("/rbac/menus#top", "/rbac/menus"),
        ("", "/"),
        ("/", "/"),
    ],
)
def test_normalize_path(raw, expected):
    assert normalize_path(raw) == expected


@pytest.mark.parametrize(
    "pattern, path, expected",
    [
        ("/loan-workflow/submit", "/loan-workflow/submit", True),
        ("/loan-workflow/submit", "/loan-workflow/submit/", True),
        ("/loan-workflow/submit", "/loan-workflow/submitted", False),
        ("/loan-workflow/*/history", "/loan-workflow/7f1c/history", True),
        ("/loan-workflow/*/history", "/loan-workflow/history/marketing", False),
        ("/loan-workflow/*", "/loan-workflow/a/b", False),
        ("/loan-workflow/queue/*", "/loan-workflow/queue/marketing", True),
        ("/notifications/**", "/notifications", True),
        ("/notifications/**", "/notifications/devices/abc", True),
        ("/rbac/**/menus", "/rbac/menus", True),
        ("/rbac/**/menus", "/rbac/roles/1/menus", True),
        ("/api/v?/health", "/api/v1/health", True),
        ("/api/v?/health", "/api/v10/health", False),
        ("/loans/{loan_id}", "/loans/123", True),
        ("/loans/{loan_id}", "/loans/123/history", False),
        ("/loans/{loan_id:\\d+}", "/loans/123", True),
        ("/loans/{loan_id:\\d+}", "/loans/abc", False),
        ("/files/report.pdf", "/files/reportxpdf", False),
        ("/", "/", True),
        ("/", "/anything", False),
    ],
)
def test_match(pattern, path, expected):
    assert match(pattern, path) is expected


@pytest.mark.parametrize("pattern", ["", "   "])
def test_blank_pattern_matches_nothing(pattern):
    assert match(pattern, "/") is False
    assert match(pattern, "/loan-workflow/submit") is False


def test_match_any_checks_every_candidate():
    paths = ["/api/v1/loan-workflow/submit", "/loan-workflow/submit"]
    assert match_any("/loan-workflow/submit", paths)
    assert not match_any("/rbac/menus", paths)


def test_compiled_patterns_are_cached():
    assert compile_pattern("/loan-workflow/*/milestones") is compile_pattern("/loan-workflow/*/milestones")
