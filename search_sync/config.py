"""Configuration module for the search index sync service."""

import os
from pydantic import BaseModel, Field


class ConfigurationError(Exception):
    """Raised when a setting required at startup is missing or unusable."""


class Settings(BaseModel):
    """Application settings with environment variable support."""

    # NATS Configuration
    nats_url: str = Field(default="tls://connect.ngs.global")
    nats_creds: str = Field(default="")

    # Subjects
    subject_user_created: str = Field(default="users.created")
    subject_user_updated: str = Field(default="users.updated")
    subject_user_deleted: str = Field(default="users.deleted")
    subject_post_upsert: str = Field(default="posts.upsert")
    subject_post_deleted: str = Field(default="posts.deleted")

    # Typesense Configuration
    typesense_api_key: str = Field(default="")
    typesense_users_url: str = Field(default="https://users2.exobook.ca:8108")
    typesense_posts_url: str = Field(default="https://posts2.exobook.ca:8108")
    users_collection: str = Field(default="users")
    posts_collection: str = Field(default="posts")

    # Apply Configuration
    index_timeout: float = Field(default=10.0)
    max_retries: int = Field(default=3)
    retry_backoff: float = Field(default=0.2)
    serialize_by_id: bool = Field(default=False)
    shutdown_grace: float = Field(default=5.0)

    # Service
    service_name: str = Field(default="search-sync")

    # Health Check Configuration
    health_check_port: int = Field(default=8080)
    health_enabled: bool = Field(default=True)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    def __init__(self, **kwargs):
        # Load from environment variables
        env_values = {}

        # Map environment variables to settings
        env_mapping = {
            "NATS_URL": "nats_url",
            "NATS_CREDS": "nats_creds",
            "SUBJECT_USER_CREATED": "subject_user_created",
            "SUBJECT_USER_UPDATED": "subject_user_updated",
            "SUBJECT_USER_DELETED": "subject_user_deleted",
            "SUBJECT_POST_UPSERT": "subject_post_upsert",
            "SUBJECT_POST_DELETED": "subject_post_deleted",
            "TYPESENSE_API_KEY": "typesense_api_key",
            "TYPESENSE_USERS_URL": "typesense_users_url",
            "TYPESENSE_POSTS_URL": "typesense_posts_url",
            "USERS_COLLECTION": "users_collection",
            "POSTS_COLLECTION": "posts_collection",
            "INDEX_TIMEOUT": "index_timeout",
            "MAX_RETRIES": "max_retries",
            "RETRY_BACKOFF": "retry_backoff",
            "SERIALIZE_BY_ID": "serialize_by_id",
            "SHUTDOWN_GRACE": "shutdown_grace",
            "SERVICE_NAME": "service_name",
            "HEALTH_CHECK_PORT": "health_check_port",
            "HEALTH_ENABLED": "health_enabled",
            "LOG_LEVEL": "log_level",
            "LOG_FORMAT": "log_format",
        }

        for env_var, field_name in env_mapping.items():
            if env_var in os.environ:
                value = os.environ[env_var]

                # Convert types
                if field_name in ["max_retries", "health_check_port"]:
                    try:
                        value = int(value)
                    except ValueError:
                        pass
                elif field_name in ["index_timeout", "retry_backoff", "shutdown_grace"]:
                    try:
                        value = float(value)
                    except ValueError:
                        pass
                elif field_name in ["serialize_by_id", "health_enabled"]:
                    value = value.lower() in ("true", "1", "yes", "on")

                env_values[field_name] = value

        # Merge kwargs with env values (kwargs take precedence)
        final_values = {**env_values, **kwargs}
        super().__init__(**final_values)

    def require_nats_creds(self) -> str:
        """Return the NATS credentials blob, failing startup when it is absent."""
        if not self.nats_creds.strip():
            raise ConfigurationError("NATS_CREDS env var is not set")
        return self.nats_creds


# Global settings instance
settings = Settings()
