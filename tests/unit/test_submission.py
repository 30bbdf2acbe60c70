"""Unit tests for the ingestion client, batcher and unit builder."""

from __future__ import annotations

import asyncio
import datetime as dt
import json
import typing as typ

import httpx
import pytest

from moderne_connect.cache import WorkingCopy
from moderne_connect.errors import AuthError, RateLimited, TransientNetworkError
from moderne_connect.providers import Visibility
from moderne_connect.submission import (
    Ack,
    BuildTool,
    IngestionClient,
    IngestionConfig,
    IngestionResponseShapeError,
    Rejected,
    SubmissionBatcher,
    SubmissionTimeout,
    SubmissionUnit,
    TransientServerError,
    build_unit,
    detect_build_tool,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

    from moderne_connect.providers import RepositoryDescriptor

type DescriptorFactory = typ.Callable[..., RepositoryDescriptor]
type Handler = typ.Callable[[httpx.Request], httpx.Response]

_ENDPOINT = "https://ingest.example.test/v1/units"
_SYNCED_AT = dt.datetime(2026, 3, 1, 9, 30, tzinfo=dt.UTC)


def _ack_all(
    status: str = "accepted", *, reason: str | None = None
) -> tuple[Handler, list[dict[str, typ.Any]]]:
    """Return a handler that acknowledges every unit, and its request log."""
    bodies: list[dict[str, typ.Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        bodies.append(body)
        return httpx.Response(
            200,
            json=[
                {
                    **unit["repository"],
                    "revision": unit["revision"],
                    "status": status,
                    "reason": reason,
                }
                for unit in body["units"]
            ],
        )

    return handler, bodies


def _client(handler: Handler, **config: typ.Any) -> IngestionClient:  # noqa: ANN401
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return IngestionClient(IngestionConfig(endpoint=_ENDPOINT, **config), http_client=http)


async def _unit(
    descriptor: RepositoryDescriptor, root: Path, revision: str = "a" * 40
) -> SubmissionUnit:
    root.mkdir(parents=True, exist_ok=True)
    return await build_unit(
        WorkingCopy(
            descriptor=descriptor,
            local_path=root,
            current_revision=revision,
            last_synced_at=_SYNCED_AT,
        )
    )


class TestBuildUnit:
    """Tests for build_unit and detect_build_tool."""

    @pytest.mark.parametrize(
        ("markers", "expected"),
        [
            ((), BuildTool.NONE),
            (("pom.xml",), BuildTool.MAVEN),
            (("build.gradle.kts",), BuildTool.GRADLE),
            (("pom.xml", "build.gradle"), BuildTool.MAVEN),
        ],
    )
    def test_detect_build_tool(
        self, tmp_path: Path, markers: tuple[str, ...], expected: BuildTool
    ) -> None:
        """Marker files at the root select the build tool."""
        for marker in markers:
            (tmp_path / marker).write_text("", encoding="utf-8")
        assert detect_build_tool(tmp_path) is expected

    @pytest.mark.asyncio
    async def test_unit_carries_descriptor_metadata(
        self, tmp_path: Path, make_descriptor: DescriptorFactory
    ) -> None:
        """The payload mirrors the descriptor and sync time."""
        descriptor = make_descriptor(
            default_branch="trunk", visibility=Visibility.PRIVATE
        )
        (tmp_path / "pom.xml").write_text("<project/>", encoding="utf-8")

        unit = await _unit(descriptor, tmp_path, revision="f" * 40)

        assert unit.revision == "f" * 40
        assert unit.payload.default_branch == "trunk"
        assert unit.payload.visibility == "private"
        assert unit.payload.build_tool is BuildTool.MAVEN
        assert unit.payload.synced_at == "2026-03-01T09:30:00+00:00"


class TestIngestionClient:
    """Tests for IngestionClient."""

    @pytest.mark.asyncio
    async def test_submit_posts_wire_format(
        self, tmp_path: Path, make_descriptor: DescriptorFactory
    ) -> None:
        """The request body follows the units schema with camelCase payloads."""
        handler, bodies = _ack_all()
        client = _client(handler, token="ingest-token")
        unit = await _unit(make_descriptor(), tmp_path)

        ack = await client.submit(unit, attempt=2)

        assert ack == Ack(identity=unit.descriptor.identity, revision=unit.revision)
        [wire] = bodies[0]["units"]
        assert wire["repository"] == {
            "provider": "github.com",
            "organization": "acme",
            "name": "widget",
        }
        assert wire["attempt"] == 2
        assert wire["payload"]["defaultBranch"] == "main"
        assert wire["payload"]["buildTool"] == "none"

    @pytest.mark.asyncio
    async def test_duplicate_is_success(
        self, tmp_path: Path, make_descriptor: DescriptorFactory
    ) -> None:
        """A duplicate acknowledgement comes back flagged, not raised."""
        handler, _ = _ack_all("duplicate")
        ack = await _client(handler).submit(await _unit(make_descriptor(), tmp_path))
        assert ack.duplicate is True

    @pytest.mark.asyncio
    async def test_rejected_unit(
        self, tmp_path: Path, make_descriptor: DescriptorFactory
    ) -> None:
        """A rejected acknowledgement raises with the service's reason."""
        handler, _ = _ack_all("rejected", reason="schema mismatch")
        with pytest.raises(Rejected, match="schema mismatch"):
            await _client(handler).submit(await _unit(make_descriptor(), tmp_path))

    @pytest.mark.asyncio
    async def test_missing_ack_is_transient(
        self, tmp_path: Path, make_descriptor: DescriptorFactory
    ) -> None:
        """A response that omits the unit is worth retrying."""

        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[])

        with pytest.raises(TransientServerError, match="no acknowledgement"):
            await _client(handler).submit(await _unit(make_descriptor(), tmp_path))

    @pytest.mark.asyncio
    async def test_batch_results_are_per_unit(
        self, tmp_path: Path, make_descriptor: DescriptorFactory
    ) -> None:
        """One rejected unit does not fail its batch mates."""

        def handler(request: httpx.Request) -> httpx.Response:
            units = json.loads(request.content)["units"]
            return httpx.Response(
                200,
                json=[
                    {
                        **unit["repository"],
                        "revision": unit["revision"],
                        "status": "rejected"
                        if unit["repository"]["name"] == "bad"
                        else "accepted",
                        "reason": "too large",
                    }
                    for unit in units
                ],
            )

        good = await _unit(make_descriptor("good"), tmp_path / "good")
        bad = await _unit(make_descriptor("bad"), tmp_path / "bad")

        results = await _client(handler).submit_batch([good, bad])

        assert isinstance(results[0], Ack)
        assert isinstance(results[1], Rejected)

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (401, AuthError),
            (403, AuthError),
            (408, SubmissionTimeout),
            (429, RateLimited),
            (400, Rejected),
            (413, Rejected),
            (500, TransientServerError),
            (503, TransientServerError),
        ],
    )
    @pytest.mark.asyncio
    async def test_status_mapping(
        self,
        tmp_path: Path,
        make_descriptor: DescriptorFactory,
        status: int,
        expected: type[Exception],
    ) -> None:
        """Whole-request failures map onto the error classes."""

        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, text="nope")

        with pytest.raises(expected):
            await _client(handler).submit(await _unit(make_descriptor(), tmp_path))

    @pytest.mark.asyncio
    async def test_timeout(
        self, tmp_path: Path, make_descriptor: DescriptorFactory
    ) -> None:
        """Client-side timeouts become SubmissionTimeout."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(SubmissionTimeout, match="timed out after 5s"):
            await _client(handler, timeout_s=5).submit(
                await _unit(make_descriptor(), tmp_path)
            )

    @pytest.mark.asyncio
    async def test_connection_error(
        self, tmp_path: Path, make_descriptor: DescriptorFactory
    ) -> None:
        """Transport failures are transient."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientNetworkError):
            await _client(handler).submit(await _unit(make_descriptor(), tmp_path))

    @pytest.mark.asyncio
    async def test_malformed_response(
        self, tmp_path: Path, make_descriptor: DescriptorFactory
    ) -> None:
        """A body that is not an acknowledgement array is a shape error."""

        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": True})

        with pytest.raises(IngestionResponseShapeError):
            await _client(handler).submit(await _unit(make_descriptor(), tmp_path))


class TestSubmissionBatcher:
    """Tests for SubmissionBatcher."""

    @pytest.mark.asyncio
    async def test_full_batch_is_sent_in_one_request(
        self, tmp_path: Path, make_descriptor: DescriptorFactory
    ) -> None:
        """Concurrent submits share a request once the batch fills."""
        handler, bodies = _ack_all()
        batcher = SubmissionBatcher(_client(handler), batch_size=3, linger_s=10)
        units = [
            await _unit(make_descriptor(name), tmp_path / name)
            for name in ("a", "b", "c")
        ]

        acks = await asyncio.gather(*(batcher.submit(unit) for unit in units))

        assert [ack.identity.name for ack in acks] == ["a", "b", "c"]
        assert len(bodies) == 1
        assert batcher.batches_sent == 1

    @pytest.mark.asyncio
    async def test_partial_batch_is_sent_after_linger(
        self, tmp_path: Path, make_descriptor: DescriptorFactory
    ) -> None:
        """A lone unit does not wait for the batch to fill."""
        handler, bodies = _ack_all()
        batcher = SubmissionBatcher(_client(handler), batch_size=10, linger_s=0.01)

        ack = await asyncio.wait_for(
            batcher.submit(await _unit(make_descriptor(), tmp_path)), timeout=1
        )

        assert ack.revision == "a" * 40
        assert len(bodies[0]["units"]) == 1

    @pytest.mark.asyncio
    async def test_request_failure_reaches_every_caller(
        self, tmp_path: Path, make_descriptor: DescriptorFactory
    ) -> None:
        """A failed request fails each unit in the batch."""

        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(502)

        batcher = SubmissionBatcher(_client(handler), batch_size=2, linger_s=10)
        units = [
            await _unit(make_descriptor(name), tmp_path / name) for name in ("a", "b")
        ]

        results = await asyncio.gather(
            *(batcher.submit(unit) for unit in units), return_exceptions=True
        )

        assert all(isinstance(result, TransientServerError) for result in results)

    @pytest.mark.asyncio
    async def test_aclose_flushes_queue(
        self, tmp_path: Path, make_descriptor: DescriptorFactory
    ) -> None:
        """Closing sends whatever is still queued."""
        handler, bodies = _ack_all()
        batcher = SubmissionBatcher(_client(handler), batch_size=10, linger_s=60)
        pending = asyncio.create_task(
            batcher.submit(await _unit(make_descriptor(), tmp_path))
        )
        await asyncio.sleep(0)

        await batcher.aclose()

        assert (await pending).identity.name == "widget"
        assert len(bodies) == 1

    def test_rejects_empty_batches(self) -> None:
        """The batch size must be positive."""
        handler, _ = _ack_all()
        with pytest.raises(ValueError, match="batch_size"):
            SubmissionBatcher(_client(handler), batch_size=0)
