"""Docker service restart and health verification via systemd."""

import logging
import subprocess
import time
from typing import Protocol

from panelkit.errors import ServiceCommandError, ServiceTimeoutError

logger = logging.getLogger(__name__)

# Seconds between is-active polls after a restart
POLL_INTERVAL = 3
# Overall budget for the service to report active again
RESTART_TIMEOUT = 20
# Upper bound on a single is-active query
STATE_TIMEOUT = 5


class Clock(Protocol):
    """Time source used by the restart verifier."""

    def monotonic(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall-clock implementation of Clock."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class ServiceManager(Protocol):
    """Minimal service manager contract."""

    def restart(self, service: str) -> None: ...

    def state(self, service: str, timeout: float = STATE_TIMEOUT) -> str: ...


class SystemdServiceManager:
    """Service manager backed by systemctl."""

    def __init__(self, command_timeout: int = 60) -> None:
        self.command_timeout = command_timeout

    def restart(self, service: str) -> None:
        """Restart a unit. Raises ServiceCommandError on failure."""
        try:
            result = subprocess.run(
                ["systemctl", "restart", service],
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
            )
        except (subprocess.SubprocessError, FileNotFoundError) as e:
            raise ServiceCommandError(f"Failed to restart {service}: {e}") from e

        if result.returncode != 0:
            raise ServiceCommandError(
                f"Failed to restart {service}: {result.stderr.strip() or result.stdout.strip()}",
                suggestion=f"Check logs with: journalctl -u {service} -n 50",
            )

    def state(self, service: str, timeout: float = STATE_TIMEOUT) -> str:
        """Return the unit's active state, or 'unknown' if it cannot be queried."""
        try:
            result = subprocess.run(
                ["systemctl", "is-active", service],
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except (subprocess.SubprocessError, FileNotFoundError):
            return "unknown"
        return result.stdout.strip() or "unknown"


class RestartVerifier:
    """Restarts a service and waits, within a fixed budget, for it to come back.

    The config change that prompted the restart is not rolled back when
    verification fails.
    """

    def __init__(
        self,
        manager: ServiceManager | None = None,
        clock: Clock | None = None,
        interval: float = POLL_INTERVAL,
        timeout: float = RESTART_TIMEOUT,
    ) -> None:
        self.manager = manager or SystemdServiceManager()
        self.clock = clock or SystemClock()
        self.interval = interval
        self.timeout = timeout

    def restart_and_verify(self, service: str = "docker") -> None:
        """Restart service and poll until it reports active.

        Raises:
            ServiceCommandError: If the restart command fails.
            ServiceTimeoutError: If the service is not active before the deadline.
        """
        self.manager.restart(service)
        self.wait_until_active(service)

    def wait_until_active(self, service: str) -> None:
        deadline = self.clock.monotonic() + self.timeout

        while True:
            remaining = deadline - self.clock.monotonic()
            if remaining <= 0:
                break
            self.clock.sleep(min(self.interval, remaining))
            if self.clock.monotonic() >= deadline:
                break

            remaining = deadline - self.clock.monotonic()
            status = self.manager.state(service, timeout=min(STATE_TIMEOUT, remaining))
            # A query that outlives the deadline does not count
            if self.clock.monotonic() >= deadline:
                logger.debug(f"{service} reported {status} after the deadline")
                break
            if status == "active":
                logger.info(f"{service} restart with new conf successful!")
                return
            logger.debug(f"{service} is {status}, waiting")

        raise ServiceTimeoutError(
            f"the {service} service cannot be restarted",
            suggestion=f"Check logs with: journalctl -u {service} -n 50",
        )
