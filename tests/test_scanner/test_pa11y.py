"""
Tests for the pa11y scan engine with a mocked subprocess.
"""

import asyncio
import json
import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from a11y_collector.scanner.base import ScanError, ScanOptions, ScanTimeoutError
from a11y_collector.scanner.pa11y import Pa11yScanner

URL = "https://example.edu/a"

ISSUES = [
    {"code": "WCAG2AA.Principle1.Guideline1_1.1_1_1.H37", "type": "error", "typeCode": 1,
     "message": "Img element missing an alt attribute.", "context": "<img>", "selector": "img"}
]


def fake_process(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0):
    proc = MagicMock()
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.wait = AsyncMock(return_value=returncode)
    proc.returncode = returncode
    return proc


def patch_exec(**kwargs):
    return patch("a11y_collector.scanner.pa11y.asyncio.create_subprocess_exec", **kwargs)


class TestPa11yScanner:
    """Running pa11y and interpreting its output."""

    def test_build_command(self):
        scanner = Pa11yScanner(command=["npx", "pa11y"])
        cmd = scanner.build_command(URL, ScanOptions(timeout_ms=5000), "/tmp/cfg.json")

        assert cmd[:2] == ["npx", "pa11y"]
        assert cmd[cmd.index("--reporter") + 1] == "json"
        assert cmd[cmd.index("--standard") + 1] == "WCAG2AA"
        assert cmd[cmd.index("--timeout") + 1] == "5000"
        assert cmd[cmd.index("--config") + 1] == "/tmp/cfg.json"
        assert cmd[-1] == URL

    @pytest.mark.asyncio
    async def test_issues_found(self):
        proc = fake_process(json.dumps(ISSUES).encode(), returncode=2)

        with patch_exec(new=AsyncMock(return_value=proc)):
            issues = await Pa11yScanner().scan(URL, ScanOptions())

        assert issues == ISSUES

    @pytest.mark.asyncio
    async def test_no_issues(self):
        with patch_exec(new=AsyncMock(return_value=fake_process(b"[]", returncode=0))):
            assert await Pa11yScanner().scan(URL, ScanOptions()) == []

    @pytest.mark.asyncio
    async def test_config_file_written_and_removed(self):
        seen = {}

        async def capture(*cmd, **kwargs):
            path = cmd[list(cmd).index("--config") + 1]
            with open(path) as f:
                seen.update(json.load(f))
            seen["path"] = path
            return fake_process(b"[]")

        with patch_exec(new=capture):
            await Pa11yScanner().scan(URL, ScanOptions(viewport_width=800, user_agent="bot"))

        assert seen["viewport"] == {"width": 800, "height": 768}
        assert seen["userAgent"] == "bot"
        assert not os.path.exists(seen["path"])

    @pytest.mark.asyncio
    async def test_error_exit_raises(self):
        proc = fake_process(b"", b"net::ERR_NAME_NOT_RESOLVED", returncode=1)

        with patch_exec(new=AsyncMock(return_value=proc)):
            with pytest.raises(ScanError, match="ERR_NAME_NOT_RESOLVED"):
                await Pa11yScanner().scan(URL, ScanOptions())

    @pytest.mark.asyncio
    async def test_missing_binary_raises(self):
        with patch_exec(new=AsyncMock(side_effect=FileNotFoundError("pa11y"))):
            with pytest.raises(ScanError, match="not installed"):
                await Pa11yScanner().scan(URL, ScanOptions())

    @pytest.mark.asyncio
    async def test_hung_process_is_killed(self):
        async def hang():
            await asyncio.sleep(10)

        proc = fake_process()
        proc.communicate = hang

        with patch_exec(new=AsyncMock(return_value=proc)):
            with pytest.raises(ScanTimeoutError):
                await Pa11yScanner(process_grace_seconds=0.01).scan(URL, ScanOptions(timeout_ms=10))

        proc.kill.assert_called_once()
        proc.wait.assert_awaited_once()


class TestParseOutput:
    """Reporter output parsing."""

    def test_empty_output_is_no_issues(self):
        assert Pa11yScanner.parse_output(URL, "  \n") == []

    def test_invalid_json_raises(self):
        with pytest.raises(ScanError):
            Pa11yScanner.parse_output(URL, "Error: page crashed")

    def test_non_list_raises(self):
        with pytest.raises(ScanError):
            Pa11yScanner.parse_output(URL, '{"issues": []}')
