"""
SLA External Service Integrations
==================================

External services for deadline tracking and escalation:
- System clock
- YAML escalation policy with watchdog hot reload
- Notification webhook with circuit breaker and retries
"""

import asyncio
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from taskflow.core import ConfigurationException, ExternalServiceException
from taskflow.shared.infrastructure.logging import get_logger
from taskflow.sla.application.services import (
    IClock,
    IEscalationRuleRepository,
    INotificationDispatcher,
    ISLAPolicyProvider,
)
from taskflow.sla.domain import (
    ClockPolicy,
    EscalationDecision,
    EscalationPolicyConfig,
    EscalationRule,
    ReminderFired,
    build_rules,
)

logger = get_logger(__name__)


class SystemClock(IClock):
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class PolicyFileHandler(FileSystemEventHandler):
    """
    Watchdog event handler for escalation policy file changes.

    Editors that save through a temp file and rename show up as created or
    moved events rather than modified ones.
    """

    def __init__(self, policy_manager: "EscalationPolicyManager", policy_path: Path):
        self.policy_manager = policy_manager
        self.policy_path = policy_path
        super().__init__()

    def _reload_if_policy(self, path) -> None:
        if Path(path).resolve() == self.policy_path.resolve():
            logger.info("Escalation policy file changed", extra={"path": str(path)})
            self.policy_manager.reload()

    def on_modified(self, event):
        """Handle file modification event."""
        if not event.is_directory:
            self._reload_if_policy(event.src_path)

    def on_created(self, event):
        if not event.is_directory:
            self._reload_if_policy(event.src_path)

    def on_moved(self, event):
        """Handle a file renamed onto the policy path."""
        if not event.is_directory:
            self._reload_if_policy(event.dest_path)


class EscalationPolicyManager(IEscalationRuleRepository, ISLAPolicyProvider):
    """
    Thread-safe escalation policy with hot-reload support.

    Serves the active rule set and clock policy from a YAML file. Uses
    watchdog to monitor the file and swap in a new policy without
    restarting; an invalid file is rejected and the previous policy kept.
    """

    def __init__(self, base_policy: Optional[ClockPolicy] = None):
        self._base_policy = base_policy or ClockPolicy()
        self._config: Optional[EscalationPolicyConfig] = None
        self._rules: List[EscalationRule] = []
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None
        self._loaded_at: Optional[datetime] = None

    def load(self, path: Path) -> EscalationPolicyConfig:
        """
        Initial policy load.

        Raises:
            ConfigurationException: If the file is not a valid policy
        """
        self._path = path
        config = self._load_from_file(path)
        self._swap(config)
        return config

    def _load_from_file(self, path: Path) -> EscalationPolicyConfig:
        """Load and validate the YAML policy file."""
        if not path.exists():
            logger.warning(
                "Escalation policy file not found, no rules active",
                extra={"path": str(path)}
            )
            return EscalationPolicyConfig()

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
            return EscalationPolicyConfig(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationException(
                f"Invalid escalation policy file: {path}",
                {"path": str(path), "error": str(e)}
            ) from e

    def _swap(self, config: EscalationPolicyConfig) -> None:
        rules = build_rules(config)
        with self._lock:
            self._config = config
            self._rules = rules
            self._loaded_at = datetime.now(timezone.utc)
        logger.info(
            "Escalation policy loaded",
            extra={"rules": len(rules), "rule_ids": [rule.id for rule in rules]}
        )

    def reload(self) -> bool:
        """Reload the policy from file, keeping the current one on error."""
        if self._path is None:
            return False

        try:
            self._swap(self._load_from_file(self._path))
            return True
        except ConfigurationException as e:
            logger.error(
                "Failed to reload escalation policy, keeping previous",
                extra={"path": str(self._path), "error": e.details.get("error")}
            )
            return False

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Watches the parent directory, so a policy file created later is
        picked up. Skips watching if the directory doesn't exist or inotify
        is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.parent.exists():
            logger.info(
                "Policy directory doesn't exist, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = PolicyFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info("Started watching policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning(
                "File watching not available, using static policy",
                extra={"error": str(e)}
            )
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching the policy file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    @property
    def config(self) -> EscalationPolicyConfig:
        """Get current policy."""
        with self._lock:
            if self._config is None:
                raise RuntimeError("Escalation policy not loaded")
            return self._config

    async def list_active(self) -> List[EscalationRule]:
        with self._lock:
            return list(self._rules)

    def get_clock_policy(self) -> ClockPolicy:
        with self._lock:
            if self._config is None:
                return self._base_policy
            return self._config.clock.apply(self._base_policy)


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        """Check if request should be allowed."""
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        """Record successful request."""
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        """Record failed request."""
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class WebhookNotificationDispatcher(INotificationDispatcher):
    """
    Posts escalation and reminder events as JSON to a webhook.

    Events are structured only; rendering them for people is the
    receiver's job. Delivery uses:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling

    Without a webhook URL events are logged and treated as delivered.
    """

    def __init__(
        self,
        webhook_url: Optional[str],
        timeout_seconds: float = 5.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def dispatch_escalation(self, decision: EscalationDecision) -> None:
        await self._post(decision.to_dict(), decision.item_id)

    async def dispatch_reminder(self, event: ReminderFired) -> None:
        await self._post(event.to_dict(), event.item_id)

    async def _post(self, payload: Dict[str, Any], item_id: str) -> None:
        """
        Deliver one event.

        Raises:
            ExternalServiceException: If the circuit is open or all attempts fail
        """
        if not self._webhook_url:
            logger.info(
                "Notification webhook not configured, event logged only",
                extra={"event": payload.get("event"), "item_id": item_id}
            )
            return

        if not self._circuit_breaker.allow_request():
            raise ExternalServiceException(
                "notification webhook", "circuit breaker open", {"item_id": item_id}
            )

        last_error = ""
        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=payload)

                if response.is_success:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Notification delivered",
                        extra={"event": payload.get("event"), "item_id": item_id}
                    )
                    return

                last_error = f"status {response.status_code}"
                logger.warning(
                    "Notification webhook returned non-2xx",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )

            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
                logger.error(
                    "Notification delivery failed",
                    extra={"error": last_error, "attempt": attempt + 1, "item_id": item_id}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_base * 2 ** attempt)

        self._circuit_breaker.record_failure()
        raise ExternalServiceException(
            "notification webhook",
            f"delivery failed after {self._max_retries} attempts: {last_error}",
            {"item_id": item_id}
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
