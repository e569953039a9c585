"""Tests for the outbound request policy."""

import pytest

from blockflow.engine.sandbox import SSRFBlockedError, check_url
from blockflow.engine.sandbox.ssrf import is_blocked_address


@pytest.mark.parametrize(
    "address",
    [
        "127.0.0.1",
        "10.1.2.3",
        "172.16.0.5",
        "192.168.1.1",
        "169.254.169.254",
        "0.0.0.0",
        "224.0.0.1",
        "::1",
        "fe80::1%eth0",
        "fc00::1",
        "::ffff:127.0.0.1",
        "::ffff:10.0.0.1",
        "not-an-address",
    ],
)
def test_non_public_addresses_blocked(address: str) -> None:
    assert is_blocked_address(address) is True


@pytest.mark.parametrize("address", ["8.8.8.8", "93.184.216.34", "2606:4700:4700::1111"])
def test_public_addresses_allowed(address: str) -> None:
    assert is_blocked_address(address) is False


class TestCheckUrl:
    """URL-level checks (literal addresses and names needing no DNS)."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("url", "reason"),
        [
            ("file:///etc/passwd", "scheme 'file' is not allowed"),
            ("ftp://example.com/data", "scheme 'ftp' is not allowed"),
            ("/relative/path", "scheme '(none)' is not allowed"),
            ("http:///path", "missing host"),
            ("http://localhost:8080/admin", "host 'localhost' is local"),
            ("http://metadata.internal/", "host 'metadata.internal' is local"),
            ("http://printer.local/", "host 'printer.local' is local"),
            ("http://127.0.0.1/", "non-public address 127.0.0.1"),
            ("http://10.0.0.1:9000/", "non-public address 10.0.0.1"),
            ("http://169.254.169.254/latest/meta-data", "non-public address 169.254.169.254"),
            ("http://[::1]/", "non-public address ::1"),
            ("http://[::ffff:127.0.0.1]/", "non-public address ::ffff:"),
        ],
    )
    async def test_blocked(self, url: str, reason: str) -> None:
        with pytest.raises(SSRFBlockedError) as exc_info:
            await check_url(url)
        assert reason in exc_info.value.reason
        assert str(exc_info.value).startswith("SSRF blocked: ")
        assert isinstance(exc_info.value, PermissionError)

    @pytest.mark.asyncio
    async def test_public_literal_allowed(self) -> None:
        await check_url("https://8.8.8.8/dns-query")

    @pytest.mark.asyncio
    async def test_allowed_hosts_bypass(self) -> None:
        await check_url("http://localhost:8080/", allowed_hosts=["LOCALHOST"])
        await check_url("http://127.0.0.1/", allowed_hosts=["127.0.0.1"])

    @pytest.mark.asyncio
    async def test_allowed_hosts_do_not_cover_other_hosts(self) -> None:
        with pytest.raises(SSRFBlockedError):
            await check_url("http://127.0.0.1/", allowed_hosts=["localhost"])
