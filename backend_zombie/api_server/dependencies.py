"""FastAPI dependencies: app-scoped services wired by create_app()."""

from __future__ import annotations

from typing import Callable

from fastapi import Request

from backend_zombie.database.store import BeneficiaryStore
from backend_zombie.services.custody import CustodyService


def get_store(request: Request) -> BeneficiaryStore:
    return request.app.state.store


def get_custody(request: Request) -> CustodyService:
    return request.app.state.custody


def get_clock(request: Request) -> Callable[[], int]:
    """Clock (ms) used for read-time expiry; tests replace it on app.state."""
    return request.app.state.clock
