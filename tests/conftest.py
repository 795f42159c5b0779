"""Shared fixtures: settings and a stubbed APOD upstream."""
from __future__ import annotations

import httpx
import pytest

from main import ApodClient, Settings, create_app

API_URL = "https://apod.test/planetary/apod"

SAMPLE_BODY = {
    "date": "2020-01-01",
    "explanation": "E",
    "url": "http://x/img.jpg",
    "title": "T",
}


@pytest.fixture
def settings():
    return Settings(api_key="test-key", api_url=API_URL)


@pytest.fixture
def upstream():
    """Records outbound requests; tests replace ``handler`` to change replies."""

    class Upstream:
        def __init__(self):
            self.requests = []
            self.handler = lambda request: httpx.Response(200, json=SAMPLE_BODY)

        def __call__(self, request):
            self.requests.append(request)
            return self.handler(request)

        @property
        def dates(self):
            return [r.url.params.get("date") for r in self.requests]

    return Upstream()


@pytest.fixture
def client(settings, upstream):
    return ApodClient(settings, transport=httpx.MockTransport(upstream))


@pytest.fixture
def app(settings, client):
    return create_app(settings, client=client)
