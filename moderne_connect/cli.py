"""Command-line entry point for moderne-connect.

Usage::

    mod-connect run --org openrewrite --org moderneinc --format json
    mod-connect run --config run.yaml --output report.md
    mod-connect version

Settings are layered: ``MODERNE_CONNECT_*`` environment variables first, then
the optional YAML run file, then command-line flags.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import signal
import sys
import typing as typ
from importlib import metadata
from pathlib import Path

from cyclopts import App, Parameter
from sqlalchemy.exc import SQLAlchemyError

from moderne_connect.cache import (
    CacheConfig,
    GitRunner,
    RepositoryCache,
    WorkingCopyIndex,
)
from moderne_connect.errors import ConfigError, ConnectError, describe_error
from moderne_connect.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_exception,
    log_info,
    log_warning,
)
from moderne_connect.pipeline import (
    ExitCode,
    PipelineConfig,
    PipelineCoordinator,
    ReportFormat,
    RunFile,
    RunMode,
    exit_code_for,
    load_run_file,
    render_report,
)
from moderne_connect.providers import (
    DiscoveryCursor,
    OrganizationFilter,
    ProviderConfig,
    ProviderKind,
    create_provider,
)
from moderne_connect.scheduling import SchedulerConfig, WorkScheduler
from moderne_connect.submission import (
    IngestionClient,
    IngestionConfig,
    SubmissionBatcher,
)

if typ.TYPE_CHECKING:
    import httpx

    from moderne_connect.pipeline import RunReport, Submitter

logger = get_logger(__name__)

_DISTRIBUTION = "moderne-connect"


def package_version() -> str:
    """Return the installed distribution version."""
    try:
        return metadata.version(_DISTRIBUTION)
    except metadata.PackageNotFoundError:
        return "0+unknown"


app = App(
    name="mod-connect",
    help="Discover repositories, sync them into a local cache and submit them "
    "for ingestion.",
    version=package_version,
)


@dataclasses.dataclass(frozen=True, slots=True)
class RunSettings:
    """Every configuration object a run needs, after layering."""

    provider: ProviderConfig
    cache: CacheConfig
    ingestion: IngestionConfig
    scheduler: SchedulerConfig
    pipeline: PipelineConfig
    organization_filter: OrganizationFilter
    cursor: DiscoveryCursor | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class RunOverrides:
    """Values supplied on the command line; ``None`` means not given."""

    organizations: tuple[str, ...] = ()
    include: tuple[str, ...] = ()
    prefix: str | None = None
    provider: str | None = None
    csv_path: Path | None = None
    api_url: str | None = None
    cache_root: Path | None = None
    ingest_url: str | None = None
    mode: str | None = None
    max_concurrency: int | None = None
    per_host_limit: int | None = None
    grace_period: float | None = None
    batch_size: int | None = None
    resubmit_unchanged: bool | None = None
    prune_skipped: bool | None = None
    verify_tls: bool | None = None
    resume_from: str | None = None


def _pick[T](*values: T | None) -> T | None:
    """Return the first value that is not ``None``."""
    for value in values:
        if value is not None:
            return value
    return None


def _changes(**values: object) -> dict[str, object]:
    return {key: value for key, value in values.items() if value is not None}


def build_settings(
    overrides: RunOverrides, run_file: RunFile | None = None
) -> RunSettings:
    """Layer command-line overrides over the run file over the environment.

    Raises
    ------
    ConfigError
        If a layer holds an invalid value or a required setting is missing.

    """
    file = run_file or RunFile()
    provider_env = ProviderConfig.from_env()
    verify_tls = _pick(overrides.verify_tls, file.verify_tls)
    raw_kind = _pick(overrides.provider, file.provider)
    csv_path = _pick(
        overrides.csv_path, Path(file.csv_path) if file.csv_path else None
    )
    provider = dataclasses.replace(
        provider_env,
        **_changes(
            kind=ProviderKind.parse(raw_kind) if raw_kind else None,
            csv_path=csv_path,
            api_url=_pick(overrides.api_url, file.api_url),
            default_branch=file.default_branch,
            include_archived=file.include_archived,
            verify_tls=verify_tls,
        ),
    )

    cache_root = _pick(
        overrides.cache_root, Path(file.cache_root) if file.cache_root else None
    )
    cache = dataclasses.replace(CacheConfig.from_env(), **_changes(root=cache_root))

    ingestion = IngestionConfig.from_env(
        endpoint=_pick(overrides.ingest_url, file.ingest_url)
    )
    batch_size = _pick(overrides.batch_size, file.batch_size)
    if batch_size is not None:
        ingestion = dataclasses.replace(ingestion, batch_size=batch_size)
    if verify_tls is not None:
        ingestion = dataclasses.replace(ingestion, verify_tls=verify_tls)

    scheduler_env = SchedulerConfig.from_env()
    host_limits = dict(scheduler_env.host_limits)
    host_limits.update(file.host_limits)
    scheduler = dataclasses.replace(
        scheduler_env,
        **_changes(
            max_concurrency=_pick(overrides.max_concurrency, file.max_concurrency),
            per_host_limit=_pick(overrides.per_host_limit, file.per_host_limit),
            grace_period=_pick(overrides.grace_period, file.grace_period),
        ),
        host_limits=tuple(sorted(host_limits.items())),
    )

    raw_mode = _pick(overrides.mode, file.mode)
    pipeline = dataclasses.replace(
        PipelineConfig.from_env(),
        **_changes(
            mode=RunMode.parse(raw_mode) if raw_mode else None,
            resubmit_unchanged=_pick(
                overrides.resubmit_unchanged, file.resubmit_unchanged
            ),
            prune_skipped=_pick(overrides.prune_skipped, file.prune_skipped),
        ),
    )

    organization_filter = OrganizationFilter(
        organizations=overrides.organizations or tuple(file.organizations),
        include=overrides.include or tuple(file.include),
        prefix=_pick(overrides.prefix, file.prefix),
    )
    if provider.kind is not ProviderKind.CSV and not organization_filter.organizations:
        raise ConfigError.missing("organizations")
    return RunSettings(
        provider=provider,
        cache=cache,
        ingestion=ingestion,
        scheduler=scheduler,
        pipeline=pipeline,
        organization_filter=organization_filter,
        cursor=DiscoveryCursor.parse(overrides.resume_from)
        if overrides.resume_from
        else None,
    )


@contextlib.contextmanager
def _signal_handlers(coordinator: PipelineCoordinator) -> typ.Iterator[None]:
    """Route SIGINT and SIGTERM to the coordinator's cancellation token."""
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(
                signum, coordinator.cancel, f"received {signum.name}"
            )
        except (NotImplementedError, RuntimeError):
            # Platforms without loop signal support fall back to KeyboardInterrupt.
            continue
        installed.append(signum)
    try:
        yield
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)


async def execute_run(
    settings: RunSettings,
    *,
    provider_http: httpx.AsyncClient | None = None,
    ingest_http: httpx.AsyncClient | None = None,
    handle_signals: bool = True,
) -> RunReport:
    """Build every component for ``settings``, run the pipeline, clean up."""
    provider = create_provider(settings.provider, http_client=provider_http)
    index: WorkingCopyIndex | None = None
    client: IngestionClient | None = None
    batcher: SubmissionBatcher | None = None
    try:
        if settings.cache.use_index:
            settings.cache.resolved_root.mkdir(parents=True, exist_ok=True)
            index = await WorkingCopyIndex.open(settings.cache.index_url)
        cache = RepositoryCache(
            settings.cache,
            git=GitRunner(
                executable=settings.cache.git_executable,
                timeout_s=settings.cache.git_timeout_s,
                auth_header=settings.provider.git_auth_header,
                verify_tls=settings.provider.verify_tls,
            ),
            index=index,
        )
        client = IngestionClient(settings.ingestion, http_client=ingest_http)
        submitter: Submitter = client
        if settings.ingestion.batch_size > 1:
            batcher = SubmissionBatcher(
                client,
                batch_size=settings.ingestion.batch_size,
                linger_s=settings.ingestion.linger_s,
            )
            submitter = batcher
        coordinator = PipelineCoordinator(
            provider,
            cache,
            submitter,
            scheduler=WorkScheduler(settings.scheduler),
            config=settings.pipeline,
            submit_host=settings.ingestion.host,
        )
        if handle_signals:
            with _signal_handlers(coordinator):
                return await coordinator.run(
                    settings.organization_filter, cursor=settings.cursor
                )
        return await coordinator.run(
            settings.organization_filter, cursor=settings.cursor
        )
    finally:
        if batcher is not None:
            await batcher.aclose()
        if client is not None:
            await client.aclose()
        if index is not None:
            await index.aclose()
        await provider.aclose()


def _write_report(text: str, output: Path | None) -> None:
    if output is None:
        sys.stdout.write(text)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding="utf-8")
    log_info(logger, "Report written to %s", output)


@app.command
def run(  # noqa: PLR0913
    *,
    org: typ.Annotated[
        list[str] | None, Parameter(help="Organization or group to walk.")
    ] = None,
    include: typ.Annotated[
        list[str] | None, Parameter(help="Glob over organization/name to keep.")
    ] = None,
    prefix: str | None = None,
    provider: str | None = None,
    csv_path: Path | None = None,
    api_url: str | None = None,
    cache_root: Path | None = None,
    ingest_url: str | None = None,
    mode: str | None = None,
    max_concurrency: int | None = None,
    per_host_limit: int | None = None,
    grace_period: float | None = None,
    batch_size: int | None = None,
    resubmit_unchanged: bool | None = None,
    prune_skipped: bool | None = None,
    verify_tls: bool | None = None,
    resume_from: str | None = None,
    config: typ.Annotated[
        Path | None, Parameter(env_var="MODERNE_CONNECT_RUN_FILE")
    ] = None,
    output_format: typ.Annotated[
        ReportFormat, Parameter(name="--format")
    ] = ReportFormat.TEXT,
    output: Path | None = None,
    log_level: typ.Annotated[
        str, Parameter(env_var="MODERNE_CONNECT_LOG_LEVEL")
    ] = "INFO",
) -> int:
    """Discover, sync and submit repositories, then print the run report.

    Args:
        org: Organizations or groups to walk, in order.
        include: Glob patterns over ``organization/name``.
        prefix: Keep repositories whose ``organization/name`` starts with this.
        provider: ``github``, ``gitlab`` or ``csv``.
        csv_path: Repository list for the CSV provider.
        api_url: Provider API base URL.
        cache_root: Directory holding working copies.
        ingest_url: Ingestion endpoint.
        mode: ``streaming`` or ``gated``.
        max_concurrency: Repositories in flight at once.
        per_host_limit: Concurrent requests per upstream host.
        grace_period: Seconds in-flight work may finish after cancellation.
        batch_size: Units per ingestion request.
        resubmit_unchanged: Submit revisions the index already acknowledged.
        prune_skipped: Delete cached working copies of skipped repositories.
        verify_tls: Verify TLS certificates of the provider and ingestion
            service; ``--no-verify-tls`` disables it.
        resume_from: Discovery cursor printed by an interrupted run.
        config: YAML run file.
        output_format: ``text`` or ``json``.
        output: Write the report here instead of stdout.
        log_level: Log level.

    Returns:
        Exit code derived from the run report.

    """
    normalized, invalid = configure_logging(log_level, force=True)
    if invalid:
        log_warning(logger, "Invalid log level %r; using %s", log_level, normalized)
    overrides = RunOverrides(
        organizations=tuple(org or ()),
        include=tuple(include or ()),
        prefix=prefix,
        provider=provider,
        csv_path=csv_path,
        api_url=api_url,
        cache_root=cache_root,
        ingest_url=ingest_url,
        mode=mode,
        max_concurrency=max_concurrency,
        per_host_limit=per_host_limit,
        grace_period=grace_period,
        batch_size=batch_size,
        resubmit_unchanged=resubmit_unchanged,
        prune_skipped=prune_skipped,
        verify_tls=verify_tls,
        resume_from=resume_from,
    )
    try:
        run_file = load_run_file(config) if config is not None else None
        settings = build_settings(overrides, run_file)
        settings.provider.validate()
    except ConfigError as exc:
        log_error(logger, "Configuration error: %s", describe_error(exc))
        return ExitCode.FATAL
    try:
        report = asyncio.run(execute_run(settings))
    except (ConnectError, SQLAlchemyError, OSError) as exc:
        log_exception(
            logger, f"Run failed before completion: {describe_error(exc)}", exc
        )
        return ExitCode.FATAL
    _write_report(render_report(report, output_format), output)
    return exit_code_for(report)


@app.command
def version() -> int:
    """Print the installed moderne-connect version."""
    sys.stdout.write(f"{package_version()}\n")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``mod-connect`` console script."""
    result = app(argv)
    return int(result) if isinstance(result, int) else 0


if __name__ == "__main__":
    sys.exit(main())
