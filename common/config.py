"""Process configuration using Pydantic Settings."""

import logging
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a ``.env`` file.

    These describe *where* and *as whom* the stack is provisioned. The
    per-component options (AZ count, task counts, ...) live in the stack
    options, not here.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Naming
    project_name: str = "appstack"
    environment: str = "dev"

    # AWS
    aws_region: str = "us-east-1"

    # Resource provider class (IoC, fully-qualified Python class name)
    #   Real deployments: providers.pulumi_aws.PulumiProvider
    #   Dry runs/tests:   providers.memory.InMemoryProvider
    resource_provider: str = "providers.pulumi_aws.PulumiProvider"

    # Logging
    log_level: str = "INFO"

    # Extra tag applied to every taggable resource (empty = none)
    owner_tag: str = ""

    @property
    def resolved_log_level(self) -> int:
        """Numeric logging level, falling back to INFO for unknown names."""
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO

    @property
    def common_tags(self) -> dict[str, str]:
        """Tags shared by every resource of the stack."""
        tags = {
            "Project": self.project_name,
            "Environment": self.environment,
            "ManagedBy": "pulumi",
        }
        if self.owner_tag:
            tags["Owner"] = self.owner_tag
        return tags


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
