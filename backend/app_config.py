# backend/app_config.py

"""
Application configuration.

Settings are read from the environment (optionally seeded from backend/.env)
and gathered into an explicit ReconciliationSettings object. Engine functions
take the settings as an argument instead of reading ambient state.
"""

import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Near-zero snapping for display noise (e.g. "-0.003 L remaining")
NEAR_ZERO_EPSILON = 0.01

# Business tolerance for completing an operation (~0.13 gal)
COMPLETION_TOLERANCE_L = 0.5

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


class ReconciliationSettings(BaseModel):
    """Organization preferences and tolerances used by the engine"""
    completion_tolerance_l: float = Field(default=COMPLETION_TOLERANCE_L, ge=0)
    near_zero_epsilon: float = Field(default=NEAR_ZERO_EPSILON, ge=0)
    volume_display_unit: str = "L"
    weight_display_unit: str = "kg"
    date_format: str = "%Y-%m-%d"
    timezone: str = "UTC"


class AppConfig(BaseModel):
    """Process-level configuration for the HTTP service"""
    mongo_url: str = "mongodb://localhost:27017"
    db_name: str = "cidery"
    cors_origins: List[str] = Field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)


def _env_float(env, name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    return float(raw)


def load_settings(environ: Optional[dict] = None) -> ReconciliationSettings:
    """Build reconciliation settings from environment variables."""
    env = os.environ if environ is None else environ
    return ReconciliationSettings(
        completion_tolerance_l=_env_float(env, 'COMPLETION_TOLERANCE_L', COMPLETION_TOLERANCE_L),
        near_zero_epsilon=_env_float(env, 'NEAR_ZERO_EPSILON', NEAR_ZERO_EPSILON),
        volume_display_unit=env.get('DEFAULT_VOLUME_UNIT', 'L'),
        weight_display_unit=env.get('DEFAULT_WEIGHT_UNIT', 'kg'),
        date_format=env.get('DATE_FORMAT', '%Y-%m-%d'),
        timezone=env.get('TIMEZONE', 'UTC'),
    )


def load_config() -> AppConfig:
    """Build the service configuration from environment variables."""
    cors_origins_env = os.environ.get('CORS_ORIGINS', '')
    if cors_origins_env:
        cors_origins = [origin.strip() for origin in cors_origins_env.split(',') if origin.strip()]
    else:
        cors_origins = list(DEFAULT_CORS_ORIGINS)

    return AppConfig(
        mongo_url=os.environ.get('MONGO_URL', 'mongodb://localhost:27017'),
        db_name=os.environ.get('DB_NAME', 'cidery'),
        cors_origins=cors_origins,
        reconciliation=load_settings(),
    )
