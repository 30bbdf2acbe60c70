"""Behavioural tests for complete pipeline runs."""

from __future__ import annotations

import asyncio
import dataclasses
import typing as typ

import httpx
import pytest
from pytest_bdd import given, parsers, scenario, then, when

from moderne_connect.cli import RunOverrides, build_settings, execute_run
from moderne_connect.pipeline import RunState, exit_code_for
from moderne_connect.scheduling import RetryPolicy

if typ.TYPE_CHECKING:
    from pathlib import Path

    import falcon.asgi

    from moderne_connect.pipeline import RunReport
    from tests.conftest import LocalRemote
    from tests.features.conftest import IngestionServiceFake

_INGEST_URL = "http://ingest.test/v1/units"
_FAST = RetryPolicy(max_attempts=3, base_delay=0.0, jitter=0.0)


def run_async[T](coro: typ.Coroutine[typ.Any, typ.Any, T]) -> T:
    """Run async coroutines in sync BDD step functions."""
    return asyncio.run(coro)


class PipelineContext(typ.TypedDict, total=False):
    """Shared state used by BDD steps."""

    cache_root: Path
    remote: LocalRemote
    github: typ.Callable[[httpx.Request], httpx.Response]
    report: RunReport


@scenario(
    "../pipeline_run.feature",
    "Repositories are submitted despite a transient ingestion failure",
)
def test_transient_ingestion_failure() -> None:
    """Behavioural test: a 502 from ingestion is retried to success."""


@scenario("../pipeline_run.feature", "Unchanged repositories are not submitted again")
def test_unchanged_not_resubmitted() -> None:
    """Behavioural test: a second run skips acknowledged revisions."""


@scenario("../pipeline_run.feature", "New commits are submitted on the next run")
def test_new_commits_submitted() -> None:
    """Behavioural test: a moved revision is submitted again."""


@scenario("../pipeline_run.feature", "Rejected provider credentials abort the run")
def test_rejected_credentials_abort() -> None:
    """Behavioural test: provider auth failure is fatal for the run."""


@scenario(
    "../pipeline_run.feature",
    "A unit stored before a gateway timeout is acknowledged on retry",
)
def test_timeout_after_store() -> None:
    """Behavioural test: the retry of a stored unit comes back as a duplicate."""


@pytest.fixture
def pipeline_context(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> PipelineContext:
    """Provide an isolated cache root and provider token for each scenario."""
    monkeypatch.setenv("MODERNE_CONNECT_PROVIDER_TOKEN", "ghp_bdd")
    return {"cache_root": tmp_path / "cache"}


@given("a remote repository with one commit")
def remote_repository(
    pipeline_context: PipelineContext, local_remote: LocalRemote
) -> None:
    """Create a bare remote holding a Maven project."""
    local_remote.commit("pom.xml", "<project/>\n")
    pipeline_context["remote"] = local_remote


@given(parsers.parse('a GitHub organization "{org}" listing "{names}"'))
def github_listing(pipeline_context: PipelineContext, org: str, names: str) -> None:
    """Serve one page of repositories that all clone from the local remote."""
    remote = pipeline_context["remote"]
    repos = [
        {
            "name": name.strip(),
            "owner": {"login": org},
            "clone_url": remote.url,
            "default_branch": "main",
            "visibility": "public",
        }
        for name in names.split(",")
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"/orgs/{org}/repos"
        return httpx.Response(200, json=repos)

    pipeline_context["github"] = handler


@given(parsers.parse('a GitHub organization "{org}" that rejects the token'))
def github_rejects(pipeline_context: PipelineContext, org: str) -> None:
    """Serve 401 for every listing request."""
    del org

    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "Bad credentials"})

    pipeline_context["github"] = handler


@given("an ingestion service")
def plain_ingestion_service(ingestion_service: IngestionServiceFake) -> None:
    """Use the fake ingestion service as is."""
    assert ingestion_service.requests == 0


@given("an ingestion service that fails its first request")
def flaky_ingestion_service(ingestion_service: IngestionServiceFake) -> None:
    """Make the next request fail with 502."""
    ingestion_service.failures_remaining = 1


@given("an ingestion service that times out after storing its first request")
def late_ingestion_service(ingestion_service: IngestionServiceFake) -> None:
    """Store the next batch but answer it with 504."""
    ingestion_service.timeouts_after_store = 1


def _run_pipeline(
    pipeline_context: PipelineContext, ingestion_app: falcon.asgi.App, org: str
) -> None:
    settings = build_settings(
        RunOverrides(
            organizations=(org,),
            cache_root=pipeline_context["cache_root"],
            ingest_url=_INGEST_URL,
        )
    )
    settings = dataclasses.replace(
        settings,
        pipeline=dataclasses.replace(
            settings.pipeline, submit_retry=_FAST, discovery_retry=_FAST
        ),
    )

    async def _run() -> RunReport:
        provider_http = httpx.AsyncClient(
            transport=httpx.MockTransport(pipeline_context["github"])
        )
        ingest_http = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=ingestion_app),
            base_url="http://ingest.test",
        )
        async with provider_http, ingest_http:
            return await execute_run(
                settings,
                provider_http=provider_http,
                ingest_http=ingest_http,
                handle_signals=False,
            )

    pipeline_context["report"] = run_async(_run())


@when(parsers.parse('the pipeline runs for "{org}"'))
def run_pipeline(
    pipeline_context: PipelineContext, ingestion_app: falcon.asgi.App, org: str
) -> None:
    """Run the pipeline once."""
    _run_pipeline(pipeline_context, ingestion_app, org)


@when(parsers.parse('the pipeline runs again for "{org}"'))
def run_pipeline_again(
    pipeline_context: PipelineContext, ingestion_app: falcon.asgi.App, org: str
) -> None:
    """Run the pipeline a second time against the same cache."""
    _run_pipeline(pipeline_context, ingestion_app, org)


@when("a new commit is pushed to the remote")
def push_commit(pipeline_context: PipelineContext) -> None:
    """Advance the remote's default branch."""
    pipeline_context["remote"].commit("README.md", "changed\n")


@then(parsers.parse('every repository is reported as "{status}"'))
def every_repository(pipeline_context: PipelineContext, status: str) -> None:
    """Assert a uniform outcome across the report."""
    report = pipeline_context["report"]
    assert report.outcomes
    assert [str(o.status) for o in report.outcomes] == [status] * len(report.outcomes)
    assert report.state is RunState.DONE


@then(parsers.parse("the ingestion service stored {count:d} units"))
def stored_units(ingestion_service: IngestionServiceFake, count: int) -> None:
    """Assert how many distinct revisions the service accepted."""
    assert len(ingestion_service.stored) == count


@then("no unit was stored twice")
def stored_once(ingestion_service: IngestionServiceFake) -> None:
    """Assert no (repository, revision) reached the service more than once."""
    assert all(seen == 1 for seen in ingestion_service.stored.values())


@then(parsers.parse("every repository needed {count:d} submit attempts"))
def submit_attempts(pipeline_context: PipelineContext, count: int) -> None:
    """Assert the number of submission attempts per repository."""
    report = pipeline_context["report"]
    assert [o.attempts["submit"] for o in report.outcomes] == [count] * len(
        report.outcomes
    )


@then("every repository is acknowledged as a duplicate")
def acknowledged_duplicate(pipeline_context: PipelineContext) -> None:
    """Assert the service reported each revision as already held."""
    assert all(o.duplicate for o in pipeline_context["report"].outcomes)


@then(parsers.parse("the exit code is {code:d}"))
def exit_code(pipeline_context: PipelineContext, code: int) -> None:
    """Assert the process exit code the report maps to."""
    assert exit_code_for(pipeline_context["report"]) == code


@then(parsers.parse('the run is aborted with "{error_type}"'))
def run_aborted(pipeline_context: PipelineContext, error_type: str) -> None:
    """Assert a fatal abort and its error type."""
    report = pipeline_context["report"]
    assert report.state is RunState.ABORTED
    assert report.fatal_error is not None
    assert report.fatal_error.startswith(f"{error_type}:")
    assert report.outcomes == ()


@then("no working copies were created")
def no_working_copies(pipeline_context: PipelineContext) -> None:
    """Assert the cache holds nothing but the index."""
    cache_root = pipeline_context["cache_root"]
    entries = sorted(p.name for p in cache_root.iterdir()) if cache_root.exists() else []
    assert entries in ([], [".moderne-connect.sqlite3"])
