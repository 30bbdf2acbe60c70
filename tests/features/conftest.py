"""Shared fixtures for BDD feature tests.

The fake ingestion service is a small Falcon ASGI app mounted on
``httpx.ASGITransport``, so runs exercise the real HTTP client without a
network listener.
"""

from __future__ import annotations

import typing as typ

import falcon
import falcon.asgi
import pytest

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response


class IngestionServiceFake:
    """Accept unit batches, remembering each (repository, revision) once."""

    def __init__(self) -> None:
        """Initialise empty storage."""
        self.requests = 0
        self.failures_remaining = 0
        self.timeouts_after_store = 0
        self.stored: dict[tuple[str, str, str, str], int] = {}

    async def on_post(self, req: Request, resp: Response) -> None:
        """Acknowledge every unit in the batch, or fail while scripted to.

        ``timeouts_after_store`` makes the service keep the units but answer
        504, as a gateway does when the backend finishes after its deadline.
        """
        self.requests += 1
        if self.failures_remaining:
            self.failures_remaining -= 1
            resp.status = falcon.HTTP_502
            resp.media = {"error": "upstream unavailable"}
            return
        body = await req.get_media()
        acks = []
        for unit in body["units"]:
            repository = unit["repository"]
            key = (
                repository["provider"],
                repository["organization"],
                repository["name"],
                unit["revision"],
            )
            status = "duplicate" if key in self.stored else "accepted"
            self.stored[key] = self.stored.get(key, 0) + 1
            acks.append({**repository, "revision": unit["revision"], "status": status})
        if self.timeouts_after_store:
            self.timeouts_after_store -= 1
            resp.status = falcon.HTTP_504
            resp.media = {"error": "gateway timeout"}
            return
        resp.media = acks


@pytest.fixture
def ingestion_service() -> IngestionServiceFake:
    """Return a fresh fake ingestion service."""
    return IngestionServiceFake()


@pytest.fixture
def ingestion_app(ingestion_service: IngestionServiceFake) -> falcon.asgi.App:
    """Return the Falcon ASGI app serving ``ingestion_service``."""
    app = falcon.asgi.App()
    app.add_route("/v1/units", ingestion_service)
    return app
