"""
Runtime configuration

Settings are read from environment variables (a local .env file is loaded
first when present).
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    """Orchestrator settings"""
    jwt_secret: str = "dev-secret"
    agent_secret: str = "devpilot-secret-key"
    agent_endpoint: str = ""
    edge_region: str = "IAD"
    frontend_url: str = ""

    llm_api_key: str = ""
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o-mini"

    rate_limit_capacity: float = 100.0
    rate_limit_refill: float = 10.0
    agent_ttl_seconds: float = 60.0
    max_steps: int = 5
    agent_timeout: float = 30.0

    stream_interval: float = 1.0
    stream_lifetime: float = 30.0

    log_level: str = "INFO"
    log_dir: str = ""

    version: str = "v2.1-kv-enabled"
    service_name: str = "devpilot-orchestrator"


def load_settings(env_file: str = None) -> Settings:
    """
    Build settings from the environment.

    Args:
        env_file: Optional path to a .env file (defaults to ./.env)

    Returns:
        Settings instance
    """
    load_dotenv(env_file)

    defaults = Settings()
    return Settings(
        jwt_secret=os.getenv("JWT_SECRET", defaults.jwt_secret),
        agent_secret=os.getenv("AGENT_SECRET", defaults.agent_secret),
        agent_endpoint=os.getenv("AGENT_ENDPOINT", defaults.agent_endpoint).rstrip("/"),
        edge_region=os.getenv("EDGE_REGION", defaults.edge_region),
        frontend_url=os.getenv("FRONTEND_URL", defaults.frontend_url),
        llm_api_key=os.getenv("LLM_API_KEY", defaults.llm_api_key),
        llm_base_url=os.getenv("LLM_BASE_URL", defaults.llm_base_url),
        llm_model=os.getenv("LLM_MODEL", defaults.llm_model),
        rate_limit_capacity=float(os.getenv("RATE_LIMIT_CAPACITY", defaults.rate_limit_capacity)),
        rate_limit_refill=float(os.getenv("RATE_LIMIT_REFILL", defaults.rate_limit_refill)),
        agent_ttl_seconds=float(os.getenv("AGENT_TTL_SECONDS", defaults.agent_ttl_seconds)),
        max_steps=int(os.getenv("MAX_STEPS", defaults.max_steps)),
        agent_timeout=float(os.getenv("AGENT_TIMEOUT", defaults.agent_timeout)),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        log_dir=os.getenv("LOG_DIR", defaults.log_dir),
    )
