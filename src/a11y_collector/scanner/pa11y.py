"""
Scan engine backed by the pa11y command-line tool.

Each scan runs ``pa11y --reporter json`` in a subprocess. pa11y exits with
0 when the page has no issues, 2 when issues were found and 1 on errors;
anything other than a JSON array on stdout is treated as a failed scan.
"""

import asyncio
import json
import logging
import os
import tempfile
from typing import Any, Dict, List, Optional, Sequence

from .base import ScanEngine, ScanError, ScanOptions, ScanTimeoutError

logger = logging.getLogger(__name__)

EXIT_NO_ISSUES = 0
EXIT_ISSUES_FOUND = 2


class Pa11yScanner(ScanEngine):
    """Runs pa11y for each URL and returns its JSON issue list."""

    def __init__(self, command: Optional[Sequence[str]] = None, process_grace_seconds: float = 30.0):
        """
        Initialize the pa11y scanner.

        Args:
            command: Command used to invoke pa11y (default: ["pa11y"])
            process_grace_seconds: Extra time allowed on top of the page timeout
                before the subprocess is killed
        """
        self.command = list(command or ["pa11y"])
        self.process_grace_seconds = process_grace_seconds

    def build_command(self, url: str, options: ScanOptions, config_path: str) -> List[str]:
        """Build the pa11y argument list for a URL."""
        return self.command + [
            "--reporter", "json",
            "--standard", options.standard,
            "--timeout", str(options.timeout_ms),
            "--wait", str(options.wait_ms),
            "--config", config_path,
            url
        ]

    @staticmethod
    def _write_config(options: ScanOptions) -> str:
        """Write viewport and user agent settings to a temporary pa11y config file."""
        pa11y_config = {
            "viewport": {
                "width": options.viewport_width,
                "height": options.viewport_height
            },
            "userAgent": options.user_agent
        }

        with tempfile.NamedTemporaryFile('w', suffix='.json', prefix='pa11y-', delete=False) as f:
            json.dump(pa11y_config, f)
            return f.name

    async def scan(self, url: str, options: ScanOptions) -> List[Dict[str, Any]]:
        """Scan a URL with pa11y."""
        config_path = self._write_config(options)
        try:
            stdout, stderr, returncode = await self._run(
                self.build_command(url, options, config_path),
                options.timeout_ms / 1000 + self.process_grace_seconds
            )
        finally:
            try:
                os.unlink(config_path)
            except OSError:
                logger.debug(f"Could not remove pa11y config {config_path}")

        if returncode not in (EXIT_NO_ISSUES, EXIT_ISSUES_FOUND):
            message = stderr.strip() or stdout.strip() or f"pa11y exited with {returncode}"
            raise ScanError(f"pa11y failed for {url}: {message[:500]}")

        return self.parse_output(url, stdout)

    @staticmethod
    def parse_output(url: str, stdout: str) -> List[Dict[str, Any]]:
        """
        Parse pa11y JSON reporter output.

        Args:
            url: URL that was scanned (for error messages)
            stdout: Raw reporter output

        Returns:
            List of issues
        """
        if not stdout.strip():
            return []

        try:
            issues = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise ScanError(f"Unreadable pa11y output for {url}: {str(e)}") from e

        if not isinstance(issues, list):
            raise ScanError(f"Unexpected pa11y output for {url}: {type(issues).__name__}")

        return issues

    async def _run(self, cmd: List[str], timeout: float):
        """Run the pa11y subprocess and collect its output."""
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except FileNotFoundError as e:
            raise ScanError(f"{cmd[0]} is not installed or not in PATH") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            raise ScanTimeoutError(f"pa11y did not finish within {timeout:.0f}s")

        return (
            stdout.decode('utf-8', errors='replace'),
            stderr.decode('utf-8', errors='replace'),
            proc.returncode
        )
