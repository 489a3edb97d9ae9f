"""Tests for the feed client using mocked HTTP responses."""

import threading

import requests
import responses

from jobimport.config import PipelineConfig
from jobimport.feeds.client import FeedClient

FEED_XML = b"""<?xml version="1.0"?>
<rss version="2.0"><channel><item><title>Engineer</title></item></channel></rss>
"""


@responses.activate
def test_fetch_returns_raw_body():
    responses.add(responses.GET, "https://feeds.example.com/jobs.xml", body=FEED_XML, status=200)

    client = FeedClient(PipelineConfig())
    result = client.fetch("https://feeds.example.com/jobs.xml")

    assert result.success
    assert result.raw_body == FEED_XML
    assert result.error is None
    assert responses.calls[0].request.headers["User-Agent"] == "Job-Importer-Bot/1.0"


@responses.activate
def test_fetch_non_2xx_is_a_failure_not_an_exception():
    responses.add(responses.GET, "https://feeds.example.com/missing.xml", status=404)

    result = FeedClient(PipelineConfig()).fetch("https://feeds.example.com/missing.xml")

    assert not result.success
    assert result.raw_body is None
    assert "404" in result.error


@responses.activate
def test_fetch_timeout_is_a_failure():
    responses.add(
        responses.GET,
        "https://slow.example.com/feed",
        body=requests.exceptions.ConnectTimeout("Connection timed out"),
    )

    result = FeedClient(PipelineConfig()).fetch("https://slow.example.com/feed")

    assert not result.success
    assert "timed out" in result.error


@responses.activate
def test_fetch_empty_body_is_a_failure():
    responses.add(responses.GET, "https://feeds.example.com/empty", body="   ", status=200)

    result = FeedClient(PipelineConfig()).fetch("https://feeds.example.com/empty")

    assert not result.success
    assert result.error == "No data received from XML feed"


@responses.activate
def test_fetch_uses_configured_timeout():
    responses.add(responses.GET, "https://feeds.example.com/jobs.xml", body=FEED_XML)

    config = PipelineConfig(request_timeout_seconds=12.5)
    FeedClient(config).fetch("https://feeds.example.com/jobs.xml")

    assert responses.calls[0].request.req_kwargs["timeout"] == 12.5


@responses.activate
def test_fetch_many_isolates_failures():
    """One failing URL never affects the others."""
    responses.add(responses.GET, "https://a.example.com/feed", body=FEED_XML)
    responses.add(responses.GET, "https://b.example.com/feed", status=500)
    responses.add(responses.GET, "https://c.example.com/feed", body=FEED_XML)

    results = FeedClient(PipelineConfig()).fetch_many(
        ["https://a.example.com/feed", "https://b.example.com/feed", "https://c.example.com/feed"]
    )

    by_url = {r.url: r for r in results}
    assert len(results) == 3
    assert by_url["https://a.example.com/feed"].success
    assert not by_url["https://b.example.com/feed"].success
    assert by_url["https://c.example.com/feed"].success


def test_fetch_many_with_no_urls():
    assert FeedClient(PipelineConfig()).fetch_many([]) == []


def test_each_thread_gets_its_own_session():
    client = FeedClient(PipelineConfig(user_agent="Custom-Agent/2.0"))
    sessions = []

    def grab():
        sessions.append(client.session)

    workers = [threading.Thread(target=grab) for _ in range(3)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    assert len({id(s) for s in sessions}) == 3
    assert client.session is client.session
    assert all(s.headers["User-Agent"] == "Custom-Agent/2.0" for s in sessions)
