"""
Jigu Backend: Middleware Helper Tests
=====================================

What we test:
    ✅ Path exclusion (exact and prefix)
    ✅ Client IP resolution order
    ✅ Credential headers are masked
    ✅ Level chosen from status, latency and failure
    ✅ Request ids are short and unique
"""

import pytest

from jigu.middleware.logging import (
    REDACTED,
    choose_level,
    get_client_ip,
    redact_headers,
    should_exclude_path,
)
from jigu.middleware.request_id import new_request_id
from jigu.models.log_entry import LogLevel


class TestPathExclusion:
    @pytest.mark.parametrize("path", ["/health", "/health/db", "/ping"])
    def test_excluded(self, path):
        assert should_exclude_path(path, ["/health", "/ping"])

    @pytest.mark.parametrize("path", ["/healthz", "/api/v1/scripts", "/"])
    def test_not_excluded(self, path):
        assert not should_exclude_path(path, ["/health", "/ping"])


class TestClientIp:
    def test_first_forwarded_hop_wins(self):
        headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.1", "x-real-ip": "10.0.0.2"}
        assert get_client_ip(headers, "127.0.0.1") == "203.0.113.7"

    def test_real_ip_then_cloudflare(self):
        assert get_client_ip({"x-real-ip": "10.0.0.2"}, None) == "10.0.0.2"
        assert get_client_ip({"cf-connecting-ip": "198.51.100.4"}, None) == "198.51.100.4"

    def test_falls_back_to_peer_then_unknown(self):
        assert get_client_ip({}, "127.0.0.1") == "127.0.0.1"
        assert get_client_ip({}, None) == "unknown"


class TestHeaderRedaction:
    def test_masks_credentials(self):
        redacted = redact_headers({
            "Authorization": "Bearer secret",
            "Cookie": "session=1",
            "X-Api-Key": "k",
            "X-Auth-Token": "t",
            "Accept": "application/json",
        })
        assert redacted["authorization"] == REDACTED
        assert redacted["cookie"] == REDACTED
        assert redacted["x-api-key"] == REDACTED
        assert redacted["x-auth-token"] == REDACTED
        assert redacted["accept"] == "application/json"


class TestLevelSelection:
    @pytest.mark.parametrize(
        "status,is_slow,failed,expected",
        [
            (200, False, False, LogLevel.INFO),
            (200, True, False, LogLevel.WARN),
            (404, False, False, LogLevel.WARN),
            (503, False, False, LogLevel.ERROR),
            (200, False, True, LogLevel.ERROR),
        ],
    )
    def test_choose_level(self, status, is_slow, failed, expected):
        assert choose_level(status, is_slow, failed) is expected


class TestRequestId:
    def test_ids_are_short_and_unique(self):
        ids = {new_request_id() for _ in range(100)}
        assert len(ids) == 100
        assert all(len(i) == 12 for i in ids)
