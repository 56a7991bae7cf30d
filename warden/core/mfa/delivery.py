from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

import requests

from warden.core.logger import get_logger


class DeliveryChannel(Protocol):
    """Out-of-band code delivery (SMS/email/push gateway). Raise on failure."""

    def send(self, user_id: str, challenge_id: str, method: str, code: str) -> None: ...


class LoggingDeliveryChannel:
    """Development channel: records that a code went out, never the code itself."""

    def __init__(self, logger: Any = None):
        self.logger = logger or get_logger()

    def send(self, user_id: str, challenge_id: str, method: str, code: str) -> None:
        self.logger.info(f"MFA {method} code issued for user={user_id} challenge={challenge_id[:8]}")


@dataclass
class WebhookDeliveryChannel:
    """Posts the code to a delivery gateway over HTTPS."""

    url: str
    timeout_seconds: float = 10.0
    bearer_token: Optional[str] = None

    def send(self, user_id: str, challenge_id: str, method: str, code: str) -> None:
        headers = {"Authorization": f"Bearer {self.bearer_token}"} if self.bearer_token else {}
        try:
            r = requests.post(
                self.url,
                json={"user_id": user_id, "challenge_id": challenge_id, "method": method, "code": code},
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except requests.Timeout as e:
            raise TimeoutError("delivery gateway timed out") from e
        r.raise_for_status()


def build_delivery_channel(mfa_cfg: Any, logger: Any = None) -> DeliveryChannel:
    """Channel named by `mfa.delivery`; the webhook shares the dispatch timeout."""
    if mfa_cfg.delivery == "webhook":
        token = mfa_cfg.webhook_token.get_secret_value() if mfa_cfg.webhook_token is not None else None
        return WebhookDeliveryChannel(url=str(mfa_cfg.webhook_url), timeout_seconds=mfa_cfg.dispatch_timeout_seconds, bearer_token=token)
    return LoggingDeliveryChannel(logger)


class DispatchQueue:
    """
    Bounded worker pool for out-of-band delivery.

    `submit` never blocks the caller: when `queue_size` deliveries are already
    pending the new one is dropped and logged. Channel errors are retried with
    exponential backoff. A send that raises TimeoutError, or does not return
    within `timeout_seconds`, is reported once as `timeout` and not retried.
    """

    def __init__(
        self,
        channel: DeliveryChannel,
        *,
        workers: int = 4,
        queue_size: int = 100,
        retries: int = 3,
        backoff_seconds: float = 0.5,
        timeout_seconds: float = 10.0,
        audit: Any = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Any = None,
    ):
        self.channel = channel
        self.retries = max(1, int(retries))
        self.backoff_seconds = float(backoff_seconds)
        self.timeout_seconds = float(timeout_seconds)
        self.audit = audit
        self.sleep = sleep
        self.logger = logger or get_logger()
        self._slots = threading.Semaphore(max(1, int(queue_size)))
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(workers)), thread_name_prefix="mfa-dispatch")
        # sends run here so a hung channel never pins a dispatch worker
        self._senders = ThreadPoolExecutor(max_workers=max(1, int(workers)), thread_name_prefix="mfa-send")
        self._closed = False

    def submit(self, user_id: str, challenge_id: str, method: str, code: str) -> bool:
        if self._closed or not self._slots.acquire(blocking=False):
            self.logger.warning(f"MFA dispatch dropped (queue full) for challenge={challenge_id[:8]}")
            self._report(user_id, challenge_id, method, "failure", reason="queue_full", attempts=0)
            return False
        try:
            fut = self._executor.submit(self._deliver, user_id, challenge_id, method, code)
        except RuntimeError:
            self._slots.release()
            self.logger.warning(f"MFA dispatch dropped (shut down) for challenge={challenge_id[:8]}")
            self._report(user_id, challenge_id, method, "failure", reason="shutdown", attempts=0)
            return False
        fut.add_done_callback(lambda _f: self._slots.release())
        return True

    def _deliver(self, user_id: str, challenge_id: str, method: str, code: str) -> bool:
        for attempt in range(1, self.retries + 1):
            try:
                self._senders.submit(self.channel.send, user_id, challenge_id, method, code).result(timeout=self.timeout_seconds)
            except (TimeoutError, FutureTimeout):
                self.logger.error(f"MFA dispatch timed out for challenge={challenge_id[:8]} method={method}")
                self._report(user_id, challenge_id, method, "failure", reason="timeout", attempts=attempt)
                return False
            except Exception as e:  # noqa: BLE001
                self.logger.warning(f"MFA dispatch attempt {attempt}/{self.retries} failed: {e.__class__.__name__}")
                if attempt < self.retries:
                    self.sleep(self.backoff_seconds * (2 ** (attempt - 1)))
                continue
            self._report(user_id, challenge_id, method, "success", reason="delivered", attempts=attempt)
            return True
        self.logger.error(f"MFA dispatch gave up for challenge={challenge_id[:8]} method={method}")
        self._report(user_id, challenge_id, method, "failure", reason="delivery_failed", attempts=self.retries)
        return False

    def _report(self, user_id: str, challenge_id: str, method: str, outcome: str, *, reason: str, attempts: int) -> None:
        if self.audit is None:
            return
        self.audit.log(
            "mfa_dispatch",
            "mfa",
            outcome,
            user_id=user_id,
            details={"challenge_id": challenge_id, "method": method, "reason": reason, "attempts": attempts},
        )

    def shutdown(self, *, wait: bool = True) -> None:
        self._closed = True
        self._executor.shutdown(wait=wait)
        self._senders.shutdown(wait=False, cancel_futures=True)
