"""
Server configuration for CopyGuard.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Set


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServerConfig:
    """Configuration for the CopyGuard server."""

    host: str = "0.0.0.0"
    port: int = 8000

    database_url: Optional[str] = None

    api_keys: Set[str] = field(default_factory=lambda: {"dev-user-key"})

    cors_origins: list = field(default_factory=lambda: ["*"])

    debug: bool = False

    log_level: str = "info"

    # YAML step template; None means Manager -> Legal -> Executive
    step_template_path: Optional[str] = None

    require_identity: bool = False
    retain_workflow_history: bool = True
    seed_demo_rules: bool = False

    # Generative evaluation is off unless a model is configured
    llm_model: Optional[str] = None
    llm_api_key: Optional[str] = None
    evaluator_timeout_seconds: float = 15.0

    retrieval_backend: str = "none"
    retrieval_top_k: int = 5

    fallback_severity: str = "high"

    def __post_init__(self):
        if self.database_url is None:
            self.database_url = os.environ.get("DATABASE_URL", "sqlite:///./copyguard.db")

        env_keys = os.environ.get("COPYGUARD_API_KEYS")
        if env_keys:
            self.api_keys = {k.strip() for k in env_keys.split(",") if k.strip()}

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create configuration from environment variables."""
        return cls(
            host=os.environ.get("COPYGUARD_HOST", "0.0.0.0"),
            port=int(os.environ.get("COPYGUARD_PORT", "8000")),
            database_url=os.environ.get("DATABASE_URL"),
            debug=_env_flag("COPYGUARD_DEBUG", False),
            log_level=os.environ.get("COPYGUARD_LOG_LEVEL", "info"),
            step_template_path=os.environ.get("COPYGUARD_STEP_TEMPLATE") or None,
            require_identity=_env_flag("COPYGUARD_REQUIRE_IDENTITY", False),
            retain_workflow_history=_env_flag("COPYGUARD_RETAIN_HISTORY", True),
            seed_demo_rules=_env_flag("COPYGUARD_SEED_DEMO_RULES", False),
            llm_model=os.environ.get("COPYGUARD_LLM_MODEL") or None,
            llm_api_key=os.environ.get("COPYGUARD_LLM_API_KEY") or None,
            evaluator_timeout_seconds=float(
                os.environ.get("COPYGUARD_EVALUATOR_TIMEOUT", "15.0")
            ),
            retrieval_backend=os.environ.get("COPYGUARD_RETRIEVAL_BACKEND", "none"),
            retrieval_top_k=int(os.environ.get("COPYGUARD_RETRIEVAL_TOP_K", "5")),
            fallback_severity=os.environ.get("COPYGUARD_FALLBACK_SEVERITY", "high"),
        )
