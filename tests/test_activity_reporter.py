from __future__ import annotations

import json

import httpx

from cbt_app.core.services.activity_reporter import ActivityReporter


def _reporter(base_url, handler):
    return ActivityReporter(
        base_url,
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        dispatch=lambda task: task(),
    )


def test_activity_is_posted_to_the_admin_server():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((str(request.url), json.loads(request.content)))
        return httpx.Response(204)

    reporter = _reporter("http://admin.example.test/", handler)
    reporter.report_activity("Ada Obi", "Mathematics")
    reporter.report_status(2)

    assert seen == [
        ("http://admin.example.test/api/analytics/activity", {"studentName": "Ada Obi", "subject": "Mathematics"}),
        ("http://admin.example.test/api/analytics/status", {"pendingSyncs": 2}),
    ]


def test_reporter_without_base_url_is_silent():
    seen = []
    reporter = _reporter(None, lambda request: seen.append(request) or httpx.Response(200))
    assert reporter.enabled is False
    reporter.report_activity("Ada", "Maths")
    assert seen == []


def test_network_failures_are_swallowed():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    reporter = _reporter("http://admin.example.test", handler)
    reporter.report_status(1)
    reporter.close()
