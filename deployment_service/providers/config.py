#deployment_service\providers\config.py

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderSettings(BaseSettings):
    """Backend SDK configuration, resolved once at process start."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Applied to every SDK call; a read that times out degrades to its default
    provider_request_timeout_seconds: float = 20.0

    # Kubernetes
    kubeconfig_path: Optional[str] = None
    kube_in_cluster: bool = False

    # AWS
    aws_region: Optional[str] = None

    # GCP
    gcp_project: Optional[str] = None
    gcp_region: str = "us-central1"
