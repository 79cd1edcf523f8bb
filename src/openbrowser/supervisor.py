"""Client-side supervisor for the engine process.

The supervisor owns the lifecycle of one engine server on a fixed port:
it spawns ``python -m openbrowser.api`` on demand, health-checks it lazily,
restarts it when it looks dead, and forwards RPC calls with bounded retry.

Usage::

    from openbrowser.supervisor import EngineSupervisor, install_signal_handlers

    supervisor = EngineSupervisor()
    install_signal_handlers(supervisor)
    page = supervisor.call("scrape", {"url": "https://example.com"})

An engine already listening on the port (started by someone else) is used
as-is and never killed.
"""

from __future__ import annotations

import atexit
import logging
import os
import signal
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

from openbrowser.exceptions import (
    CRASH_CODES,
    EngineUnavailableError,
    ErrorCode,
    OpenBrowserError,
    RemoteEngineError,
)
from openbrowser.settings.config import Settings

logger = logging.getLogger(__name__)

Spawner = Callable[[list[str], dict[str, str]], subprocess.Popen]


def _default_spawn(cmd: list[str], env: dict[str, str]) -> subprocess.Popen:
    return subprocess.Popen(
        cmd,
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        close_fds=True,
        start_new_session=True,
    )


@dataclass
class EngineProcessHandle:
    """What the supervisor knows about the engine it talks to.

    Attributes:
        port: Port the engine listens on.
        proc: The child process, or ``None`` when the engine was found
            already running.
        owned: Whether this supervisor spawned the engine (and may kill it).
        last_health_check: ``time.monotonic()`` of the last successful
            exchange with the engine.
    """

    port: int
    proc: subprocess.Popen | None = None
    owned: bool = False
    last_health_check: float = field(default=0.0)

    @property
    def pid(self) -> int | None:
        return self.proc.pid if self.proc is not None else None

    def exited(self) -> bool:
        return self.proc is not None and self.proc.poll() is not None


class EngineSupervisor:
    """Spawn, watch and call one engine process.

    Args:
        settings: Settings to use; the cached settings when omitted.
        port: Engine port; ``engine.port`` when omitted.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
        spawn: Callable ``(cmd, env) -> Popen`` used to start the engine.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        port: int | None = None,
        transport: httpx.BaseTransport | None = None,
        spawn: Spawner | None = None,
    ) -> None:
        if settings is None:
            from openbrowser.settings import get_settings

            settings = get_settings()
        self.settings = settings
        self.config = settings.supervisor
        self.port = port or settings.engine.port
        self.base_url = f"http://127.0.0.1:{self.port}"

        self._spawn = spawn or _default_spawn
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=self.config.request_timeout_sec,
            transport=transport,
        )
        self._cond = threading.Condition()
        self._starting = False
        self._handle: EngineProcessHandle | None = None
        self.spawn_count = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def handle(self) -> EngineProcessHandle | None:
        return self._handle

    def ensure_running(self) -> EngineProcessHandle:
        """Return a handle to a live engine, starting one if needed.

        Only one caller at a time does the checking and starting; the rest
        wait on the condition and re-check once it is done.

        Raises:
            EngineUnavailableError: The engine could not be started.
        """
        with self._cond:
            while self._starting:
                self._cond.wait()
            handle = self._handle
            if handle is not None and not handle.exited() and self._fresh(handle):
                return handle
            self._starting = True

        started: EngineProcessHandle | None = None
        try:
            if handle is not None and not handle.exited() and self._probe():
                handle.last_health_check = time.monotonic()
                started = handle
            else:
                if handle is not None:
                    logger.warning("Engine on port %d is unhealthy, restarting", self.port)
                    self._discard(handle)
                started = self._start()
            return started
        finally:
            with self._cond:
                self._handle = started
                self._starting = False
                self._cond.notify_all()

    def shutdown(self) -> None:
        """Stop the engine if this supervisor owns it.  Safe to call twice."""
        with self._cond:
            handle, self._handle = self._handle, None
        if handle is not None:
            self._discard(handle)

    def close(self) -> None:
        self.shutdown()
        self._client.close()

    def detach(self) -> None:
        """Forget the engine without stopping it and release the HTTP client."""
        with self._cond:
            self._handle = None
        self._client.close()

    def __enter__(self) -> "EngineSupervisor":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _fresh(self, handle: EngineProcessHandle) -> bool:
        return time.monotonic() - handle.last_health_check < self.config.health_check_interval_sec

    def _start(self) -> EngineProcessHandle:
        if self._probe():
            logger.info("Using engine already running on port %d", self.port)
            return EngineProcessHandle(port=self.port, owned=False, last_health_check=time.monotonic())

        env = {**os.environ, "OPENBROWSER_ENGINE__PORT": str(self.port)}
        cmd = [sys.executable, "-m", "openbrowser.api"]
        logger.info("Starting engine on port %d", self.port)
        proc = self._spawn(cmd, env)
        self.spawn_count += 1
        handle = EngineProcessHandle(port=self.port, proc=proc, owned=True)

        deadline = time.monotonic() + self.config.startup_timeout_sec
        while time.monotonic() < deadline:
            if proc.poll() is not None:
                raise EngineUnavailableError(f"engine exited during startup with code {proc.returncode}")
            if self._probe():
                handle.last_health_check = time.monotonic()
                logger.info("Engine ready (pid=%s, port=%d)", handle.pid, self.port)
                return handle
            time.sleep(self.config.startup_poll_sec)

        self._discard(handle)
        raise EngineUnavailableError(
            f"engine did not become ready on port {self.port} within {self.config.startup_timeout_sec}s"
        )

    def _probe(self) -> bool:
        try:
            response = self._client.post(
                "/",
                json={"method": "test", "params": {}},
                timeout=self.config.health_check_timeout_sec,
            )
            return bool(response.json().get("success"))
        except (httpx.HTTPError, ValueError, AttributeError):
            return False

    def _discard(self, handle: EngineProcessHandle) -> None:
        if not handle.owned or handle.proc is None:
            return
        proc = handle.proc
        if proc.poll() is not None:
            return
        logger.info("Stopping engine (pid=%s)", proc.pid)
        try:
            proc.send_signal(signal.SIGTERM)
            proc.wait(timeout=self.config.terminate_grace_sec)
        except subprocess.TimeoutExpired:
            logger.warning("Engine pid=%s ignored SIGTERM, killing", proc.pid)
            proc.kill()
            proc.wait(timeout=5)
        except ProcessLookupError:
            pass

    def _invalidate(self) -> None:
        with self._cond:
            handle, self._handle = self._handle, None
        if handle is not None:
            self._discard(handle)

    # ------------------------------------------------------------------
    # RPC
    # ------------------------------------------------------------------

    def call(self, method: str, params: dict[str, Any] | None = None, retries: int | None = None) -> Any:
        """Run one RPC method on the engine and return its ``data``.

        A connection failure or a ``context_canceled`` error restarts the
        engine and retries with linear backoff.  A response that does not
        arrive in time is a ``timeout`` error and is never retried, since
        the operation may not be idempotent.  Any other engine error is
        raised immediately.

        Raises:
            RemoteEngineError: The engine reported an error.
            EngineUnavailableError: The engine could not be reached.
        """
        attempts = max(1, retries if retries is not None else self.config.max_retries)
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                self.ensure_running()
                return self._post(method, params or {})
            except RemoteEngineError as exc:
                if exc.code not in CRASH_CODES:
                    raise
                last_error = exc
            except httpx.ConnectTimeout as exc:
                last_error = exc
            except httpx.TimeoutException as exc:
                # The engine is alive but slow; the call may still be running there.
                raise RemoteEngineError(
                    ErrorCode.TIMEOUT, f"{method} got no response within {self._read_timeout(method, params or {})}s"
                ) from exc
            except (httpx.TransportError, EngineUnavailableError) as exc:
                last_error = exc

            logger.warning("%s attempt %d/%d failed: %s", method, attempt, attempts, last_error)
            self._invalidate()
            if attempt < attempts:
                time.sleep(self.config.backoff_sec * attempt)

        if isinstance(last_error, OpenBrowserError):
            raise last_error
        raise EngineUnavailableError(f"{method} failed after {attempts} attempts: {last_error}") from last_error

    def _read_timeout(self, method: str, params: dict[str, Any]) -> float:
        """Seconds to wait for *method*: its own deadline plus a margin.

        The deadline is the caller's ``timeout`` (ms) when given, else the
        engine default for the method.  Never below ``request_timeout_sec``.
        """
        browser = self.settings.browser
        timeout_ms = params.get("timeout")
        if not isinstance(timeout_ms, (int, float)) or timeout_ms <= 0:
            if method in ("automate", "automate_pro"):
                timeout_ms = browser.automation_timeout_ms
            elif method == "crawl":
                max_pages = params.get("maxPages")
                if not isinstance(max_pages, int) or max_pages <= 0:
                    max_pages = self.settings.crawl.max_pages
                timeout_ms = browser.timeout_ms * max_pages
            else:
                timeout_ms = browser.timeout_ms
        return max(self.config.request_timeout_sec, timeout_ms / 1000 + self.config.timeout_margin_sec)

    def _post(self, method: str, params: dict[str, Any]) -> Any:
        response = self._client.post(
            "/",
            json={"method": method, "params": params},
            timeout=self._read_timeout(method, params),
        )
        try:
            body = response.json()
        except ValueError as exc:
            raise EngineUnavailableError(f"engine returned HTTP {response.status_code} without a JSON body") from exc

        handle = self._handle
        if handle is not None:
            handle.last_health_check = time.monotonic()

        if body.get("success"):
            return body.get("data")
        raise RemoteEngineError(_error_code(body.get("code")), body.get("error") or "Unknown browser error")


def _error_code(value: Any) -> ErrorCode:
    try:
        return ErrorCode(value)
    except ValueError:
        return ErrorCode.INTERNAL


def install_signal_handlers(supervisor: EngineSupervisor) -> None:
    """Shut the engine down on interpreter exit, SIGINT and SIGTERM.

    Must be called from the main thread.  Previously installed handlers are
    chained.
    """
    atexit.register(supervisor.shutdown)

    for signum in (signal.SIGINT, signal.SIGTERM):
        previous = signal.getsignal(signum)

        def _handler(received: int, frame: Any, previous: Any = previous) -> None:
            supervisor.shutdown()
            if callable(previous):
                previous(received, frame)
            else:
                raise SystemExit(128 + received)

        signal.signal(signum, _handler)
