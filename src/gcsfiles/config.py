"""Configuration loading and Pydantic models for gcsfiles."""

import copy
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

DEFAULT_BUCKET_NAME = "must-be-a-valid-bucket-name"


class GCSConfig(BaseModel):
    """Google Cloud Storage API and authentication configuration."""

    project: str = ""
    service_file: str = ""
    api_root: str = "https://storage.googleapis.com"
    upload_api_root: str = "https://storage.googleapis.com/upload"
    timeout: float = 30.0


class BucketConfig(BaseModel):
    """The bucket this transport reads from and writes to."""

    name: str = DEFAULT_BUCKET_NAME
    cname: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class UploadConfig(BaseModel):
    """Resumable upload initiation settings."""

    max_retries: int = 3
    retry_delay: float = 0.5


class LoggingConfig(BaseModel):
    """Log level and output format."""

    level: str = "INFO"
    format: str = "text"


class MetricsConfig(BaseModel):
    """Prometheus metrics toggle."""

    enabled: bool = True


class GCSFilesConfig(BaseModel):
    """Top-level gcsfiles configuration."""

    gcs: GCSConfig = Field(default_factory=GCSConfig)
    bucket: BucketConfig = Field(default_factory=BucketConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


def _parse_gcs(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the gcs section from YAML data into a dict for Pydantic."""
    if data is None:
        return {}
    result: dict[str, Any] = {
        "project": data.get("project", ""),
        "service_file": data.get("service_file", ""),
    }
    for key in ("api_root", "upload_api_root", "timeout"):
        if key in data:
            result[key] = data[key]
    return result


def _parse_bucket(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the bucket section from YAML data.

    ``host`` is accepted as an alias of ``cname``.
    """
    if data is None:
        return {}
    return {
        "name": data.get("name", DEFAULT_BUCKET_NAME),
        "cname": data.get("cname", data.get("host", "")) or "",
        "metadata": data.get("metadata") or {},
    }


def _parse_upload(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the upload section from YAML data."""
    if data is None:
        return {}
    return {
        "max_retries": data.get("max_retries", 3),
        "retry_delay": data.get("retry_delay", 0.5),
    }


def _parse_logging(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the logging section from YAML data."""
    if data is None:
        return {}
    return {
        "level": data.get("level", "INFO"),
        "format": data.get("format", "text"),
    }


def _parse_metrics(data: dict[str, Any] | None) -> dict[str, Any]:
    """Parse the metrics section from YAML data."""
    if data is None:
        return {}
    return {"enabled": data.get("enabled", True)}


def config_from_dict(raw: dict[str, Any]) -> GCSFilesConfig:
    """Build a GCSFilesConfig from an already-parsed mapping."""
    return GCSFilesConfig(
        gcs=GCSConfig(**_parse_gcs(raw.get("gcs"))),
        bucket=BucketConfig(**_parse_bucket(raw.get("bucket"))),
        upload=UploadConfig(**_parse_upload(raw.get("upload"))),
        logging=LoggingConfig(**_parse_logging(raw.get("logging"))),
        metrics=MetricsConfig(**_parse_metrics(raw.get("metrics"))),
    )


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def merge_config(overrides: dict[str, Any] | None = None) -> GCSFilesConfig:
    """Deep-merge plain-dict overrides over the default configuration.

    Nested mappings are merged key by key, so ``{"bucket": {"name": "x"}}``
    keeps every other bucket default.

    Args:
        overrides: Partial configuration mapping.

    Returns:
        A validated GCSFilesConfig.
    """
    defaults = GCSFilesConfig().model_dump()
    return GCSFilesConfig.model_validate(_deep_merge(defaults, overrides or {}))


def load_config(path: Path) -> GCSFilesConfig:
    """Load a GCSFilesConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated GCSFilesConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return config_from_dict(raw)
