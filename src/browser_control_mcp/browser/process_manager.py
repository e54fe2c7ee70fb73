"""
Process manager for the Chromium subprocess

Launches a Chromium-family browser with a remote debugging port, relays its
output into the log, and waits for the DevTools HTTP endpoint before the
surface provider connects.
"""

import asyncio
import os
import shutil
from asyncio.subprocess import Process

import aiohttp

from ..utils.logging_config import get_logger, log_dict
from .config import LaunchConfig

logger = get_logger(__name__)

BROWSER_CANDIDATES = (
    "chromium",
    "chromium-browser",
    "google-chrome",
    "google-chrome-stable",
    "chrome",
    "msedge",
)


class BrowserProcessManager:
    """Manages the browser subprocess lifecycle"""

    def __init__(self, config: LaunchConfig, host: str = "127.0.0.1", port: int = 9222) -> None:
        self.config = config
        self.host = host
        self.port = port
        self.process: Process | None = None
        self._stdout_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None

    @property
    def version_url(self) -> str:
        return f"http://{self.host}:{self.port}/json/version"

    async def start(self) -> Process:
        """
        Start the browser subprocess.

        Returns:
            The subprocess Process object

        Raises:
            RuntimeError: If no browser binary is found or the DevTools
                endpoint does not come up
        """
        logger.info("=" * 80)
        logger.info("Launching browser subprocess")
        logger.info("=" * 80)

        command = self.build_command()
        logger.info(f"  Command: {' '.join(command)}")
        log_dict(logger, "Launch configuration:", dict(self.config))

        timeout = self.config.get("startup_timeout_ms", 10_000) / 1000

        try:
            self.process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=os.environ.copy(),
            )
            logger.info(f"Process created with PID: {self.process.pid}")

            self._stdout_task = asyncio.create_task(self._log_stream(self.process.stdout, "stdout"))
            self._stderr_task = asyncio.create_task(self._log_stream(self.process.stderr, "stderr"))

            logger.info("Waiting for DevTools endpoint to be ready...")
            if not await self._wait_for_devtools_ready(timeout=timeout):
                if self.process.returncode is not None:
                    raise RuntimeError(
                        f"Browser exited during startup (exit code {self.process.returncode}). "
                        "Check logs for BROWSER [stderr] messages."
                    )
                raise RuntimeError(f"DevTools endpoint did not become ready within {timeout:g} seconds")

            logger.info(f"Browser started successfully (PID: {self.process.pid})")
            logger.info("=" * 80)
            return self.process

        except Exception as e:
            logger.error("=" * 80)
            logger.error(f"Failed to start browser: {e}")
            logger.error("=" * 80)
            await self.stop()
            raise RuntimeError(f"Failed to start browser: {e}") from e

    async def stop(self) -> None:
        """Stop the browser gracefully, killing it after 5 seconds"""
        if self.process is None:
            return

        logger.info("Stopping browser subprocess...")

        for task in (self._stdout_task, self._stderr_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._stdout_task = self._stderr_task = None

        try:
            if self.process.returncode is None:
                self.process.terminate()
                try:
                    await asyncio.wait_for(self.process.wait(), timeout=5.0)
                    logger.info("Browser stopped gracefully")
                except asyncio.TimeoutError:
                    logger.warning("Browser didn't stop gracefully, forcing kill")
                    self.process.kill()
                    await self.process.wait()
                    logger.info("Browser killed")
        except ProcessLookupError:
            logger.info("Browser process already exited")
        finally:
            self.process = None

    async def is_healthy(self) -> bool:
        """True if the process is running and the DevTools endpoint answers"""
        if self.process is None or self.process.returncode is not None:
            return False

        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    self.version_url, timeout=aiohttp.ClientTimeout(total=2.0)
                ) as resp:
                    return resp.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError):
            return False

    def find_binary(self) -> str:
        configured = self.config.get("binary")
        if configured:
            return configured

        for candidate in BROWSER_CANDIDATES:
            path = shutil.which(candidate)
            if path:
                logger.info(f"Browser found at: {path}")
                return path

        raise RuntimeError(
            "No Chromium-based browser found. Set BROWSER_CONTROL_BROWSER_BINARY to its path."
        )

    def build_command(self) -> list[str]:
        """Browser binary plus flags derived from the launch configuration"""
        command = [
            self.find_binary(),
            f"--remote-debugging-address={self.host}",
            f"--remote-debugging-port={self.port}",
            "--no-first-run",
            "--no-default-browser-check",
        ]

        if self.config.get("headless", True):
            command.append("--headless=new")

        # Required when running as root in Docker
        if self.config.get("no_sandbox"):
            command.append("--no-sandbox")

        if self.config.get("user_data_dir"):
            command.append(f"--user-data-dir={self.config['user_data_dir']}")

        command.extend(self.config.get("extra_args") or [])
        command.append("about:blank")
        return command

    async def _wait_for_devtools_ready(self, timeout: float = 10.0) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while loop.time() < deadline:
            if self.process and self.process.returncode is not None:
                return False

            try:
                async with aiohttp.ClientSession() as session:
                    async with session.get(
                        self.version_url, timeout=aiohttp.ClientTimeout(total=1.0)
                    ) as resp:
                        if resp.status == 200:
                            return True
            except (aiohttp.ClientError, asyncio.TimeoutError):
                pass

            await asyncio.sleep(0.2)

        return False

    async def _log_stream(self, stream: asyncio.StreamReader | None, name: str) -> None:
        """Relay subprocess output with a BROWSER prefix"""
        if stream is None:
            return

        try:
            while True:
                line = await stream.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").rstrip()
                if not text:
                    continue
                if name == "stderr":
                    logger.warning(f"BROWSER [stderr] {text}")
                else:
                    logger.info(f"BROWSER [stdout] {text}")
        except asyncio.CancelledError:
            logger.debug(f"{name} logger task cancelled")
            raise
        except Exception as e:
            logger.error(f"Error in {name} logger: {e}")
