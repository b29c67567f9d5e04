"""Configuration models for vmigrate using Pydantic v2."""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator


class EndpointConfig(BaseModel):
    """Credentials for one management endpoint (vCenter or ONTAP cluster)."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(..., description="Hostname or IP of the management endpoint")
    username: str = Field("", description="Login username")
    password: Optional[SecretStr] = Field(None, description="Password (prefer password_env)")
    password_env: Optional[str] = Field(None, description="Environment variable containing the password")
    insecure: bool = Field(False, description="Skip SSL certificate verification")
    port: int = Field(443, description="API port")

    @model_validator(mode="before")
    @classmethod
    def resolve_password(cls, data):
        if isinstance(data, dict) and not data.get("password") and data.get("password_env"):
            env_val = os.environ.get(data["password_env"])
            if env_val:
                data = {**data, "password": env_val}
        return data

    @property
    def has_credentials(self) -> bool:
        return bool(self.username) and self.password is not None

    def secret(self) -> str:
        return self.password.get_secret_value() if self.password else ""

    def with_credentials(self, username: str, password: str) -> "EndpointConfig":
        return self.model_copy(update={"username": username, "password": SecretStr(password)})


class MigrationSettings(BaseModel):
    """Behaviour of the migration steps."""

    model_config = ConfigDict(frozen=True)

    tag_category: str = Field("Backup", description="vSphere tag category for the backup label")
    backup_tag: str = Field("Backup-Standard", description="Backup classification tag assigned after start")
    nfs_protocol: str = Field("nfs", description="Protocol used to mount target volumes")
    poll_interval_seconds: float = Field(5.0, gt=0, description="Initial replication poll interval")
    poll_backoff: float = Field(1.5, ge=1.0, description="Poll interval growth factor")
    poll_max_interval_seconds: float = Field(60.0, gt=0, description="Upper bound of the poll interval")
    replication_timeout_seconds: float = Field(3600.0, gt=0, description="Max wait for a replication transfer")
    power_on_settle_seconds: float = Field(15.0, ge=0, description="Wait after power-on before checking the VM")
    power_off_source: bool = Field(False, description="Power off running source VMs during verification")


class AppConfig(BaseModel):
    """Root application configuration."""

    model_config = ConfigDict(frozen=True)

    source_vcenter: EndpointConfig
    target_vcenter: EndpointConfig
    target_ontap: EndpointConfig
    target_svm: str = Field(..., min_length=1, description="SVM serving the replicated volumes")
    target_cluster: str = Field(..., min_length=1, description="vSphere cluster receiving the VMs")
    settings: MigrationSettings = MigrationSettings()

    @classmethod
    def from_yaml(cls, path: str | Path, **overrides) -> "AppConfig":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        _deep_merge(data, overrides)
        return cls(**data)

    @classmethod
    def from_env_and_args(cls, **overrides) -> "AppConfig":
        """Build config from environment variables with CLI overrides."""
        base = {
            "source_vcenter": {
                "host": os.environ.get("VMIGRATE_SOURCE_VCENTER", ""),
                "username": os.environ.get("VMIGRATE_SOURCE_USERNAME", ""),
                "password_env": "VMIGRATE_SOURCE_PASSWORD",
                "insecure": os.environ.get("VMIGRATE_INSECURE", "false").lower() == "true",
            },
            "target_vcenter": {
                "host": os.environ.get("VMIGRATE_TARGET_VCENTER", ""),
                "username": os.environ.get("VMIGRATE_TARGET_USERNAME", ""),
                "password_env": "VMIGRATE_TARGET_PASSWORD",
                "insecure": os.environ.get("VMIGRATE_INSECURE", "false").lower() == "true",
            },
            "target_ontap": {
                "host": os.environ.get("VMIGRATE_TARGET_ONTAP", ""),
                "username": os.environ.get("VMIGRATE_ONTAP_USERNAME", ""),
                "password_env": "VMIGRATE_ONTAP_PASSWORD",
                "insecure": os.environ.get("VMIGRATE_INSECURE", "false").lower() == "true",
            },
            "target_svm": os.environ.get("VMIGRATE_TARGET_SVM", ""),
            "target_cluster": os.environ.get("VMIGRATE_TARGET_CLUSTER", ""),
        }
        _deep_merge(base, overrides)
        return cls(**base)

    def endpoints(self) -> dict[str, EndpointConfig]:
        return {
            "source_vcenter": self.source_vcenter,
            "target_vcenter": self.target_vcenter,
            "target_ontap": self.target_ontap,
        }


def _deep_merge(base: dict, overrides: dict) -> None:
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def default_log_path(now: Optional[datetime] = None) -> Path:
    """Log file name derived from the run start time."""
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return Path(f"vmigrate-{stamp}.log")


class RunConfig(BaseModel):
    """Immutable configuration of a single migration run."""

    model_config = ConfigDict(frozen=True)

    app: AppConfig
    batch_path: Path
    log_path: Path = Field(default_factory=default_log_path)
    simulate: bool = False

    @property
    def settings(self) -> MigrationSettings:
        return self.app.settings
