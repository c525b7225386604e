from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Runtime
    environment: str = Field(default="development", validation_alias="NODE_ENV")
    port: int = Field(default=8080, validation_alias="PORT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # AWS / data (opportunities, ventures, orchestration events share one table)
    aws_region: str = Field(default="us-east-1", validation_alias="AWS_REGION")
    ddb_table_name: str | None = Field(default=None, validation_alias="DDB_TABLE_NAME")
    ddb_endpoint_url: str | None = Field(default=None, validation_alias="DDB_ENDPOINT_URL")

    # GitHub (repository host)
    github_token: str | None = Field(default=None, validation_alias="GITHUB_TOKEN")
    # Secrets Manager ARN holding GITHUB_TOKEN/GH_TOKEN; used when GITHUB_TOKEN is unset.
    github_secret_arn: str | None = Field(default=None, validation_alias="GITHUB_SECRET_ARN")
    github_api_url: str = Field(default="https://api.github.com", validation_alias="GITHUB_API_URL")
    github_timeout_seconds: float = Field(default=10.0, validation_alias="GITHUB_TIMEOUT_SECONDS")

    # Template marketplace
    template_owner: str = Field(default="Worldwidebro", validation_alias="TEMPLATE_OWNER")
    template_repo: str = Field(
        default="business-template-marketplace", validation_alias="TEMPLATE_REPO"
    )
    # Empty means "the repository's default branch".
    template_branch: str | None = Field(default=None, validation_alias="TEMPLATE_BRANCH")
    template_manifest_path: str = Field(
        default="templates/manifest.json", validation_alias="TEMPLATE_MANIFEST_PATH"
    )

    # Venture provisioning
    venture_owner: str = Field(default="Worldwidebro", validation_alias="VENTURE_OWNER")
    venture_repos_private: bool = Field(default=False, validation_alias="VENTURE_REPOS_PRIVATE")
    provisioning_enabled: bool = Field(default=True, validation_alias="PROVISIONING_ENABLED")
    # When true, a processed opportunity goes straight to `launched` instead of `matched`.
    immediate_activation: bool = Field(default=False, validation_alias="IMMEDIATE_ACTIVATION")

    # Intelligence / financial knobs
    validation_threshold: float = Field(default=0.70, validation_alias="VALIDATION_THRESHOLD")
    forecast_growth_rate: float = Field(default=0.15, validation_alias="FORECAST_GROWTH_RATE")
    revenue_target: float = Field(default=2_390_000.0, validation_alias="REVENUE_TARGET")

    # Cross-module sync
    sync_max_workers: int = Field(default=4, validation_alias="SYNC_MAX_WORKERS")
    sync_timeout_seconds: float = Field(default=60.0, validation_alias="SYNC_TIMEOUT_SECONDS")
    # Run every module sync once when the app starts (Orchestrator.initialize).
    sync_on_startup: bool = Field(default=True, validation_alias="SYNC_ON_STARTUP")

    # ---- helpers / derived flags ----
    @property
    def normalized_environment(self) -> str:
        v = (self.environment or "").strip().lower()
        if v in ("prod", "production"):
            return "production"
        if v in ("stage", "staging"):
            return "staging"
        if v in ("dev", "development"):
            return "development"
        return v or "development"

    @property
    def is_production(self) -> bool:
        return self.normalized_environment == "production"

    @property
    def template_ref(self) -> str | None:
        b = str(self.template_branch or "").strip()
        return b or None

    def require_in_production(self) -> None:
        """
        Enforce required settings in production.

        Development/staging may run without a table (local work against fakes),
        production must be fully configured.
        """
        if not self.is_production:
            return

        missing: list[str] = []
        if not self.ddb_table_name:
            missing.append("DDB_TABLE_NAME")

        if missing:
            raise RuntimeError(
                "Missing required production environment variables: "
                + ", ".join(missing)
            )

    def to_log_safe_dict(self) -> dict[str, object]:
        """
        A redacted representation safe for structured logs / diagnostics.
        """
        def _has(v: object) -> bool:
            return v is not None and str(v).strip() != ""

        return {
            "environment": self.normalized_environment,
            "port": self.port,
            "aws": {
                "aws_region": self.aws_region,
                "ddb_table_name": self.ddb_table_name,
                "ddb_endpoint_url": self.ddb_endpoint_url,
            },
            "github": {
                "api_url": self.github_api_url,
                "token_configured": _has(self.github_token),
                "secret_arn_configured": _has(self.github_secret_arn),
                "timeout_seconds": self.github_timeout_seconds,
            },
            "templates": {
                "owner": self.template_owner,
                "repo": self.template_repo,
                "branch": self.template_ref,
                "manifest_path": self.template_manifest_path,
            },
            "ventures": {
                "owner": self.venture_owner,
                "private": bool(self.venture_repos_private),
                "provisioning_enabled": bool(self.provisioning_enabled),
                "immediate_activation": bool(self.immediate_activation),
            },
            "validation_threshold": self.validation_threshold,
            "forecast_growth_rate": self.forecast_growth_rate,
            "revenue_target": self.revenue_target,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    s = Settings()
    s.require_in_production()
    return s
