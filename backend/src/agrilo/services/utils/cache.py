"""
Cache mémoire à expiration (TTL) partagé par les clients d'API externes.

Une entrée passe par : absente → fraîche → périmée → évincée.
La lecture supprime paresseusement une entrée périmée ; `sweep()` purge
toutes les entrées expirées et est planifié périodiquement (APScheduler).
Pas de taille maximale ni d'éviction LRU.
"""

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger("Agrilo.Cache")


def make_cache_key(endpoint: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Clé déterministe : endpoint + paramètres triés sérialisés en JSON."""
    return f"{endpoint}:{json.dumps(params or {}, sort_keys=True, default=str, separators=(',', ':'))}"


class TTLCache:
    """
    Dictionnaire thread-safe {clé: (données, expires_at)}.

    `clock` retourne des secondes (time.time par défaut), injectable en test.
    """

    def __init__(self, default_ttl: int = 3600, clock: Callable[[], float] = time.time, name: str = "cache"):
        self.default_ttl = default_ttl
        self.name = name
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            data, expires_at = entry
            if now < expires_at:
                logger.debug("[%s] Cache hit: %s", self.name, key)
                return data
            del self._entries[key]
        logger.debug("[%s] Cache expired: %s", self.name, key)
        return None

    def set(self, key: str, data: Any, ttl: Optional[int] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = (data, self._clock() + ttl)
        logger.debug("[%s] Data cached: %s (ttl=%ss)", self.name, key, ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def sweep(self) -> int:
        """Supprime toutes les entrées dont expires_at est passé."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
            remaining = len(self._entries)
        if expired:
            logger.info("[%s] Cache cleanup: %d deleted, %d remaining", self.name, len(expired), remaining)
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("[%s] Cache cleared", self.name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
