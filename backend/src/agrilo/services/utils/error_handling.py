"""
Gestion robuste des erreurs pour les appels sortants.

Implémente:
- Rate limiting à fenêtre fixe (non bloquant : rejette au lieu d'attendre)
- Retry avec exponential backoff
- Statistiques de retry pour le monitoring
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryStats:
    """Statistiques de retry pour monitoring."""
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    consecutive_failures: int = 0


class RateLimitExceeded(Exception):
    """Le budget de la fenêtre courante est épuisé."""

    def __init__(self, retry_after: float):
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Please wait {self.retry_after_seconds} seconds.")

    @property
    def retry_after_seconds(self) -> int:
        return int(math.ceil(self.retry_after))


class FixedWindowRateLimiter:
    """
    Compteur à fenêtre fixe.

    Si `now - window_start` dépasse la fenêtre, le compteur repart à zéro.
    Une rafale de 2x la limite reste possible à cheval sur deux fenêtres.
    """

    def __init__(self, limit: int = 60, window: float = 60.0, clock: Callable[[], float] = time.time):
        self.limit = limit
        self.window = window
        self._clock = clock
        self.request_count = 0
        self.window_start = clock()
        self._lock = threading.Lock()

    def acquire(self) -> None:
        """Consomme une unité de budget ou lève RateLimitExceeded."""
        with self._lock:
            now = self._clock()
            if now - self.window_start > self.window:
                self.request_count = 0
                self.window_start = now
            if self.request_count >= self.limit:
                raise RateLimitExceeded(self.window - (now - self.window_start))
            self.request_count += 1

    def reset(self) -> None:
        with self._lock:
            self.request_count = 0
            self.window_start = self._clock()


def retry_with_backoff(
    func: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 2.0,
    should_retry: Callable[[Exception], bool] = lambda e: True,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "request",
    stats: Optional[RetryStats] = None,
) -> T:
    """
    Exécute `func` avec exponential backoff : base_delay * 2^(attempt-1).

    Une exception pour laquelle `should_retry` renvoie False est propagée
    immédiatement. Après `max_attempts` tentatives, la dernière est propagée.
    """
    stats = stats or RetryStats()
    attempt = 1
    while True:
        stats.total_attempts += 1
        try:
            result = func()
        except Exception as e:
            stats.failed_attempts += 1
            stats.last_failure = datetime.now()
            stats.consecutive_failures += 1

            if attempt >= max_attempts or not should_retry(e):
                raise

            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                "%s failed (attempt %d/%d): %s. Retrying in %.1fs...",
                label, attempt, max_attempts, e, delay,
            )
            sleep(delay)
            attempt += 1
            continue

        stats.successful_attempts += 1
        stats.last_success = datetime.now()
        stats.consecutive_failures = 0
        if attempt > 1:
            logger.info("%s succeeded after %d attempts", label, attempt)
        return result
