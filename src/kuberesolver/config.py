"""
Resolver configuration.

Settings load from ``KUBERESOLVER_*`` environment variables (and an optional
``.env`` file) through pydantic-settings. In-cluster defaults need no
configuration at all.
"""

from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .backoff import BackoffConfig, BackoffStrategy
from .namespace import DEFAULT_NAMESPACE, KUBERNETES_NAMESPACE_FILE
from .target import KUBERNETES_SCHEME


class ChangeSourceKind(Enum):
    """How a resolver learns about endpoint changes."""

    STREAM = "stream"
    REFLECTOR = "reflector"


class ResourceKind(Enum):
    """Directory-service resource watched for a service."""

    ENDPOINTS = "endpoints"
    ENDPOINT_SLICES = "endpointslices"


class DeletePolicy(Enum):
    """What a resolver does when the watched resource is deleted."""

    CLEAR = "clear"
    RETAIN = "retain"


class ResolverSettings(BaseSettings):
    """Settings shared by every resolver a builder creates."""

    model_config = SettingsConfigDict(
        env_prefix="KUBERESOLVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    scheme: str = Field(default=KUBERNETES_SCHEME, description="Target scheme handled")

    # Directory service access
    kubeconfig: str | None = Field(
        default=None,
        description="kubeconfig file to use instead of the pod service account",
    )
    api_server: str | None = Field(
        default=None,
        description="API server URL overriding the one from the loaded configuration",
    )
    verify_ssl: bool = Field(default=True)
    request_timeout: float = Field(default=10.0, description="Timeout for list/get requests")
    watch_timeout: int = Field(
        default=300, description="Server-side timeoutSeconds for one watch request"
    )

    # Namespace defaulting
    namespace_file: str = Field(default=KUBERNETES_NAMESPACE_FILE)
    default_namespace: str = Field(default=DEFAULT_NAMESPACE)

    # Watch behaviour
    change_source: ChangeSourceKind = Field(default=ChangeSourceKind.REFLECTOR)
    resource_kind: ResourceKind = Field(default=ResourceKind.ENDPOINTS)
    delete_policy: DeletePolicy = Field(default=DeletePolicy.CLEAR)
    queue_size: int = Field(default=16, ge=1, description="Buffered events per subscription")
    publish_timeout: float = Field(default=5.0, gt=0)

    # Resubscription backoff
    backoff_strategy: BackoffStrategy = Field(default=BackoffStrategy.EXPONENTIAL)
    backoff_base_delay: float = Field(default=1.0, ge=0)
    backoff_max_delay: float = Field(default=30.0, gt=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    backoff_jitter: bool = Field(default=True)

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    def backoff_config(self) -> BackoffConfig:
        return BackoffConfig(
            strategy=self.backoff_strategy,
            base_delay=self.backoff_base_delay,
            max_delay=self.backoff_max_delay,
            backoff_multiplier=self.backoff_multiplier,
            jitter=self.backoff_jitter,
        )
