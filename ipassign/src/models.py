from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ConfigurationError

PROVIDERS = ("aws", "gcp")


def _require(env: Mapping[str, str], name: str) -> str:
    value = env.get(name, "")
    if not value:
        raise ConfigurationError(f"{name} must be defined")
    return value


class Address(BaseModel):
    public_ip: str
    allocation_id: str
    tags: dict[str, str] = {}
    instance_id: Optional[str] = None
    status: Optional[str] = None

    @property
    def attached(self) -> bool:
        return bool(self.instance_id)


class AWSSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_key_id: str
    secret_access_key: str = Field(repr=False)
    region: str

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "AWSSettings":
        return cls(
            access_key_id=_require(env, "AWS_ACCESS_KEY_ID"),
            secret_access_key=_require(env, "AWS_SECRET_ACCESS_KEY"),
            region=_require(env, "AWS_REGION"),
        )


class GCPSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Both fall back to the metadata server when unset.
    project: Optional[str] = None
    zone: Optional[str] = None

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "GCPSettings":
        return cls(
            project=env.get("GCP_PROJECT") or None,
            zone=env.get("ZONE") or None,
        )


class IPAssignConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: str
    ip_tag_key: str
    ip_tag_val: str
    node_key: str
    node_val: str
    group: Optional[str] = None
    dry_run: bool = False
    aws: Optional[AWSSettings] = None
    gcp: Optional[GCPSettings] = None

    @property
    def label_selector(self) -> str:
        return f"{self.node_key}={self.node_val}"

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "IPAssignConfig":
        provider = _require(env, "PROVIDER").lower()
        if provider not in PROVIDERS:
            raise ConfigurationError(
                f"PROVIDER must be one of {', '.join(PROVIDERS)}, got {provider!r}"
            )

        common = dict(
            provider=provider,
            ip_tag_key=_require(env, "IP_TAG_KEY"),
            ip_tag_val=_require(env, "IP_TAG_VAL"),
            node_key=_require(env, "NODE_KEY"),
            node_val=_require(env, "NODE_VAL"),
            dry_run=env.get("DRY_RUN", "false").lower() in ("1", "true", "yes"),
        )

        if provider == "aws":
            return cls(group=_require(env, "GROUP"), aws=AWSSettings.from_env(env), **common)
        return cls(group=env.get("GROUP") or None, gcp=GCPSettings.from_env(env), **common)
