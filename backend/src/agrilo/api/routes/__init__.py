"""
Routers HTTP Agrilo, montés par `agrilo.main`.
"""

from . import (
    auth, dashboard, diagnosis, farms, health, insights, irrigation, issues, onboarding, planning, voice,
)

ROUTERS = [
    health.router,
    auth.router,
    onboarding.router,
    farms.router,
    dashboard.router,
    irrigation.router,
    planning.router,
    insights.router,
    voice.router,
    diagnosis.router,
    issues.router,
]

__all__ = ["ROUTERS"]
