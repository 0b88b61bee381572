"""
Health checks : /health (basique) et /api/health/* (détaillé, sondes, métriques).

Statut global : healthy si tous les checks passent, degraded si plus de la
moitié passent (HTTP 200), unhealthy sinon (HTTP 503).
"""

import logging
import os
import platform
import shutil
import sys
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FuturesTimeout
from pathlib import Path
from typing import Any, Callable, Dict

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from agrilo.core.database import check_connection
from agrilo.core.errors import ApiError, utc_now_iso
from agrilo.core.settings import settings
from agrilo.services.external_apis.openepi import get_openepi_service
from agrilo.services.notifications import get_notification_service
from agrilo.services.utils.cache import TTLCache

logger = logging.getLogger("Agrilo.Health")

START_TIME = time.time()
CHECK_TIMEOUT_SECONDS = 5.0
OPENEPI_CHECK_TIMEOUT_SECONDS = 3.0

router = APIRouter()


def uptime() -> float:
    return round(time.time() - START_TIME, 3)


# ── Checks ───────────────────────────────────────────────────

def check_database() -> Dict[str, Any]:
    started = time.perf_counter()
    if not check_connection():
        raise RuntimeError("Database not connected")
    return {"connected": True, "responseTime": round((time.perf_counter() - started) * 1000, 2)}


def _system_memory_mb():
    try:
        page = os.sysconf("SC_PAGE_SIZE")
        return os.sysconf("SC_PHYS_PAGES") * page // (1024 * 1024), os.sysconf("SC_AVPHYS_PAGES") * page // (1024 * 1024)
    except (ValueError, OSError, AttributeError):
        return None, None


def check_memory() -> Dict[str, Any]:
    try:
        import resource
        # ru_maxrss : Ko sous Linux
        rss_mb = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss // 1024
    except ImportError:
        rss_mb = None
    total, free = _system_memory_mb()
    details = {"process": {"maxRss": rss_mb}, "system": {"total": total, "free": free}}
    if total and free is not None:
        used_percent = round((total - free) / total * 100)
        details["system"]["usagePercent"] = used_percent
        if used_percent > 95:
            raise RuntimeError(f"High memory usage: {used_percent}%")
    return details


def check_disk() -> Dict[str, Any]:
    usage = shutil.disk_usage("/")
    percent = round(usage.used / usage.total * 100)
    if percent > 85:
        raise RuntimeError(f"High disk usage: {percent}%")
    return {
        "usagePercent": percent,
        "available": f"{usage.free // (1024 ** 3)}G",
        "status": "warning" if percent > 80 else "ok",
    }


def check_external_apis() -> Dict[str, Any]:
    started = time.perf_counter()
    get_openepi_service().make_request(
        "/health", use_cache=False, retry=False, timeout=OPENEPI_CHECK_TIMEOUT_SECONDS,
    )
    apis = [{"name": "OpenEPI", "status": "healthy",
             "responseTime": round((time.perf_counter() - started) * 1000, 2)}]
    return {"apis": apis, "totalAPIs": len(apis), "healthyAPIs": len(apis)}


def check_cache() -> Dict[str, Any]:
    cache = TTLCache(default_ttl=60, name="health")
    value = str(time.time())
    cache.set("health_check_test", value)
    if cache.get("health_check_test") != value:
        raise RuntimeError("Cache write/read test failed")
    return {"status": "working", "keys": len(cache), "test": "passed"}


def check_file_system() -> Dict[str, Any]:
    audio_dir = Path(settings.AUDIO_OUTPUT_DIR)
    audio_dir.mkdir(parents=True, exist_ok=True)
    marker = audio_dir / f"health_check_{uuid.uuid4().hex}.txt"
    marker.write_text("test")
    marker.unlink()
    return {"audioDir": {"exists": True, "writable": True, "path": str(audio_dir)}}


class HealthChecker:
    """
    Registre des checks ; chaque check lève une exception en cas d'échec.

    Les checks tournent dans un pool de threads : un check qui dépasse
    `timeout` secondes est rapporté unhealthy sans bloquer la réponse.
    """

    def __init__(self, timeout: float = CHECK_TIMEOUT_SECONDS, max_workers: int = 8):
        self.timeout = timeout
        self.checks: Dict[str, Callable[[], Dict[str, Any]]] = {
            "database": check_database,
            "memory": check_memory,
            "disk": check_disk,
            "external_apis": check_external_apis,
            "cache": check_cache,
            "file_system": check_file_system,
        }
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="health-check")

    def _report(self, name: str, future: Future, started: float, timeout: float) -> Dict[str, Any]:
        try:
            details = future.result(timeout=timeout)
            status, extra = "healthy", {"details": details}
        except FuturesTimeout:
            future.cancel()
            logger.warning("Health check '%s' timed out after %ss", name, self.timeout)
            status, extra = "unhealthy", {"error": "Health check timeout"}
        except Exception as e:
            logger.warning("Health check '%s' failed: %s", name, e)
            status, extra = "unhealthy", {"error": str(e) or type(e).__name__}
        return {
            "name": name,
            "status": status,
            "responseTime": round((time.perf_counter() - started) * 1000, 2),
            **extra,
            "timestamp": utc_now_iso(),
        }

    def run_check(self, name: str) -> Dict[str, Any]:
        started = time.perf_counter()
        future = self._executor.submit(self.checks[name])
        return self._report(name, future, started, self.timeout)

    def run_all(self) -> Dict[str, Any]:
        started = time.perf_counter()
        futures = {name: self._executor.submit(check) for name, check in self.checks.items()}
        # une seule échéance commune à tous les checks
        wait(futures.values(), timeout=self.timeout)
        results = [self._report(name, future, started, 0) for name, future in futures.items()]
        healthy = sum(1 for r in results if r["status"] == "healthy")
        if healthy == len(results):
            overall = "healthy"
        elif healthy > len(results) / 2:
            overall = "degraded"
        else:
            overall = "unhealthy"
        return {
            "status": overall,
            "checks": results,
            "summary": {
                "total": len(results),
                "healthy": healthy,
                "unhealthy": len(results) - healthy,
                "responseTime": max((r["responseTime"] for r in results), default=0),
            },
            "timestamp": utc_now_iso(),
        }


health_checker = HealthChecker()


# ── Routes ───────────────────────────────────────────────────

@router.get("/health")
@router.get("/api/health")
def basic_health():
    return {
        "status": "healthy",
        "timestamp": utc_now_iso(),
        "uptime": uptime(),
        "environment": settings.APP_ENV,
        "version": settings.APP_VERSION,
    }


@router.get("/api/health/detailed")
def detailed_health():
    report = health_checker.run_all()
    report["meta"] = {
        "version": settings.APP_VERSION,
        "environment": settings.APP_ENV,
        "uptime": uptime(),
    }
    return JSONResponse(status_code=503 if report["status"] == "unhealthy" else 200, content=report)


@router.get("/api/health/status/live")
def liveness():
    return {"status": "alive", "timestamp": utc_now_iso()}


@router.get("/api/health/status/ready")
def readiness():
    ready = all(health_checker.run_check(name)["status"] == "healthy" for name in ("database", "memory"))
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "not_ready", "timestamp": utc_now_iso()},
    )


@router.get("/api/health/metrics")
def metrics():
    try:
        load_average = list(os.getloadavg())
    except (OSError, AttributeError):
        load_average = None
    return {
        "system": {
            "uptime": uptime(),
            "loadAverage": load_average,
            "cpuCount": os.cpu_count(),
            "platform": platform.system().lower(),
            "pythonVersion": sys.version.split()[0],
        },
        "memory": health_checker.run_check("memory"),
        "openepi": get_openepi_service().get_stats(),
        "notifications": get_notification_service().get_job_status(),
        "timestamp": utc_now_iso(),
    }


@router.get("/api/health/{check}")
def single_check(check: str):
    if check not in health_checker.checks:
        raise ApiError(f"Health check '{check}' not found", 404)
    result = health_checker.run_check(check)
    return JSONResponse(status_code=200 if result["status"] == "healthy" else 503, content=result)
