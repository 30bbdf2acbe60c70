"""Unit tests for repository slug utility."""

from __future__ import annotations

import pytest

from moderne_connect.common.slug import parse_repo_path, repo_slug


def test_repo_slug_prefixes_provider() -> None:
    """repo_slug returns provider:organization/name format."""
    assert repo_slug("github.com", "acme", "widget") == "github.com:acme/widget"
    assert repo_slug("gitlab.com", "a/b", "c") == "gitlab.com:a/b/c"


def test_parse_repo_path_splits_on_last_segment() -> None:
    """parse_repo_path keeps nested groups in the organization."""
    assert parse_repo_path("openrewrite/rewrite") == ("openrewrite", "rewrite")
    assert parse_repo_path("group/subgroup/project") == ("group/subgroup", "project")
    assert parse_repo_path("/acme/widget/") == ("acme", "widget")


@pytest.mark.parametrize("path", ["", "   ", "/", "invalid", "owner/", "/name"])
def test_parse_repo_path_rejects_invalid_paths(path: str) -> None:
    """parse_repo_path raises ValueError for invalid paths."""
    with pytest.raises(ValueError, match="Invalid repository path"):
        parse_repo_path(path)
