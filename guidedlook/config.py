from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel


class CreditCosts(BaseModel):
    """Credits quoted for each billable workflow action."""

    generate: int = 2
    edit: int = 2
    tryon: int = 4


class WorkflowConfig(BaseModel):
    """Guided creation workflow settings."""

    session_ttl_hours: float = 12
    max_message_length: int = 800
    request_text_limit: int = 240
    max_inventory_items: int = 250
    costs: CreditCosts = CreditCosts()


class GenerationConfig(BaseModel):
    """Downstream generation service settings."""

    base_url: str = "http://localhost:54321"
    image_path: str = "/functions/v1/generate-fashion-image"
    tryon_path: str = "/functions/v1/virtual-try-on"
    max_attempts: int = 3
    tryon_max_attempts: int = 1
    backoff_base_seconds: float = 0.7
    generation_timeout_seconds: float = 95.0
    tryon_timeout_seconds: float = 120.0


class ChatConfig(BaseModel):
    """Single-shot stylist chat settings."""

    model: str = "google-gla:gemini-2.5-flash"
    credit_cost: int = 1
    cache_ttl_hours: float = 6
    max_history: int = 12
    model_attempts: int = 3
    backoff_base_seconds: float = 0.7
    rerank_model: str = "google-gla:gemini-2.5-pro"
    rerank_confidence_threshold: float = 0.65
    rerank_inventory_size: int = 40


class RateLimitConfig(BaseModel):
    """Per-user request throttling."""

    feature: str = "chat-stylist"
    window_seconds: int = 60
    max_requests: int = 20


class AuthConfig(BaseModel):
    """Bearer token verification settings."""

    jwt_secret: Optional[str] = None
    jwks_url: str = ""
    audience: str = ""
    issuer: str = ""
    leeway: int = 30


class GuidedLookConfig(BaseModel):
    """Top-level configuration model."""

    workflow: WorkflowConfig = WorkflowConfig()
    generation: GenerationConfig = GenerationConfig()
    chat: ChatConfig = ChatConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()
    auth: AuthConfig = AuthConfig()
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> GuidedLookConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to GUIDEDLOOK_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("GUIDEDLOOK_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = GuidedLookConfig(**data)
    else:
        config = GuidedLookConfig()

    env_db_url = os.getenv("GUIDEDLOOK_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_secret = os.getenv("GUIDEDLOOK_JWT_SECRET")
    if env_secret:
        config.auth.jwt_secret = env_secret
    env_generation_url = os.getenv("GUIDEDLOOK_GENERATION_URL")
    if env_generation_url:
        config.generation.base_url = env_generation_url
    return config
