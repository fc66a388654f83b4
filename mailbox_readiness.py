import logging
import threading
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


def wait_for(probe: Callable[[], Any], timeout: float, interval: float,
             clock: Callable[[], float] = time.monotonic,
             sleep: Callable[[float], None] = time.sleep,
             cancel: Optional[threading.Event] = None) -> Any:
    """Call probe() until it returns something truthy or timeout seconds pass.

    Returns the probe's value, or None on timeout/cancel. The first probe runs
    immediately and the last one lands on the deadline.
    """
    if interval <= 0:
        raise ValueError(f"poll interval must be positive, got {interval}")
    deadline = clock() + timeout
    while True:
        result = probe()
        if result:
            return result
        remaining = deadline - clock()
        if remaining <= 0:
            return None
        if cancel is not None:
            if cancel.wait(min(interval, remaining)):
                return None
        else:
            sleep(min(interval, remaining))


class ReadinessPoller:
    """Blocks until a freshly created user's mailbox shows up in Exchange Online."""

    def __init__(self, backend, timeout: float = 8 * 60, interval: float = 30,
                 settle: float = 2 * 60,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep,
                 cancel: Optional[threading.Event] = None):
        self.backend = backend
        self.timeout = timeout
        self.interval = interval
        self.settle = settle
        self.clock = clock
        self.sleep = sleep
        self.cancel = cancel

    def wait_for_mailbox(self, upn: str) -> Optional[dict]:
        logger.info(f"Waiting up to {self.timeout:.0f}s for mailbox of {upn}")

        def probe():
            mailbox = self.backend.find_mailbox(upn)
            if not mailbox:
                logger.debug(f"Mailbox for {upn} not there yet")
            return mailbox

        return wait_for(probe, self.timeout, self.interval,
                        clock=self.clock, sleep=self.sleep, cancel=self.cancel)

    def settle_delay(self) -> None:
        if self.settle > 0:
            logger.debug(f"Settling {self.settle:.0f}s before auto-expanding archive")
            self.sleep(self.settle)
