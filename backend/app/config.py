from __future__ import annotations

import os
from typing import List

from dotenv import load_dotenv

load_dotenv()

DEFAULT_BUSINESS_TIMEZONE = "America/Mexico_City"
DEFAULT_MACHINE_IDS = ("76", "79")


def database_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL or SQLALCHEMY_DATABASE_URL must be set to create the database engine."
        )
    return url


def business_timezone() -> str:
    return os.getenv("BUSINESS_TIMEZONE") or DEFAULT_BUSINESS_TIMEZONE


def machine_ids() -> List[str]:
    raw = os.getenv("MACHINE_IDS")
    if raw is None:
        return list(DEFAULT_MACHINE_IDS)
    ids = [item.strip() for item in raw.split(",") if item.strip()]
    if not ids:
        raise RuntimeError("MACHINE_IDS must not be empty.")
    return ids


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {value}")
    return value


def sales_cache_ttl_minutes() -> int:
    return _int_env("SALES_CACHE_TTL_MINUTES", 30)


def dashboard_cache_ttl_minutes() -> int:
    return _int_env("DASHBOARD_CACHE_TTL_MINUTES", 10)


def cache_max_entries() -> int:
    return _int_env("CACHE_MAX_ENTRIES", 100)


def cascade_on_delete() -> bool:
    return os.getenv("CASCADE_ON_DELETE") == "1"
