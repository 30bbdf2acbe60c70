"""Repository slug utilities.

Slugs come in two shapes. A *repository path* is the ``organization/name``
form used by provider APIs and CSV files; organizations may themselves
contain ``/`` (GitLab subgroups), so the name is always the last segment. A
*repository slug* prefixes the provider host, ``provider:organization/name``,
and uniquely names a repository within a run.
"""

from __future__ import annotations


def repo_slug(provider: str, organization: str, name: str) -> str:
    """Build a run-unique repository slug.

    Examples
    --------
    >>> repo_slug("github.com", "openrewrite", "rewrite")
    'github.com:openrewrite/rewrite'

    """
    return f"{provider}:{organization}/{name}"


def parse_repo_path(path: str) -> tuple[str, str]:
    """Split an ``organization/name`` path into its two parts.

    Parameters
    ----------
    path:
        Repository path such as ``openrewrite/rewrite`` or
        ``group/subgroup/project``.

    Returns
    -------
    tuple[str, str]
        ``(organization, name)``.

    Raises
    ------
    ValueError
        If the path has no organization or no name.

    Examples
    --------
    >>> parse_repo_path("group/subgroup/project")
    ('group/subgroup', 'project')

    """
    cleaned = path.strip().strip("/")
    organization, sep, name = cleaned.rpartition("/")
    if not sep or not organization or not name:
        msg = f"Invalid repository path: expected 'organization/name', got {path!r}"
        raise ValueError(msg)
    return organization, name
