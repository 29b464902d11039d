"""
kudos.api.deps — FastAPI dependency injection
==============================================
"""

from __future__ import annotations

import os
from functools import lru_cache

from sqlalchemy import Engine

from kudos.config import KudosConfig, load_config
from kudos.database.engine import create_db_engine
from kudos.services.engagement_service import EngagementService


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> KudosConfig:
    return load_config(os.getenv("KUDOS_CONFIG", "config.yaml"))


@lru_cache(maxsize=1)
def get_service() -> EngagementService:
    """Process-wide service; it owns the per-user locks and the leaderboards."""
    return EngagementService(get_engine(), get_config())
