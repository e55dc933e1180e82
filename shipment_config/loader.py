"""
Configuration Loader (``shipment_config.loader``).

Responsibility
--------------
Loads a YAML engine configuration document and parses it into the frozen
``shipment_config.schema.EngineConfig``.  Runtime callers go through
``shipment_config.get_active_config()``.

Invariants enforced
-------------------
* Every problem found in a document is collected and reported together in
  one ``ConfigValidationError``; no silently-accepted bad values.
* Unknown top-level sections are errors.
* ``compute_checksum`` is deterministic for equal documents.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ConfigValidationError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from shipment_config.schema import (
    AuditConfig,
    ConfigValidationError,
    EngineConfig,
    MatchingConfig,
    NegotiationConfig,
    StoreConfig,
)

_SECTIONS = {"config_id", "version", "store", "negotiation", "matching", "audit", "logging"}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigValidationError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigValidationError(["top level must be a mapping"], str(path))
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _section(data: dict[str, Any], name: str, errors: list[str]) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        errors.append(f"{name}: must be a mapping")
        return {}
    return value


def _int(section: dict, key: str, default: int, minimum: int, label: str, errors: list[str]) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        errors.append(f"{label}.{key}: expected an integer, got {value!r}")
        return default
    if value < minimum:
        errors.append(f"{label}.{key}: must be >= {minimum}, got {value}")
        return default
    return value


def parse_engine_config(data: dict[str, Any], source: str | None = None) -> EngineConfig:
    errors: list[str] = []

    unknown = sorted(set(data) - _SECTIONS)
    if unknown:
        errors.append(f"unknown section(s): {', '.join(unknown)}")

    store = _section(data, "store", errors)
    negotiation = _section(data, "negotiation", errors)
    matching = _section(data, "matching", errors)
    audit = _section(data, "audit", errors)
    logging_section = _section(data, "logging", errors)

    database_url = store.get("database_url", StoreConfig.database_url)
    if not isinstance(database_url, str) or not database_url.strip():
        errors.append("store.database_url: must be a non-empty string")
        database_url = StoreConfig.database_url

    backoff = store.get("retry_backoff_seconds", StoreConfig.retry_backoff_seconds)
    if isinstance(backoff, bool) or not isinstance(backoff, (int, float)) or backoff < 0:
        errors.append(f"store.retry_backoff_seconds: must be a non-negative number, got {backoff!r}")
        backoff = StoreConfig.retry_backoff_seconds

    log_level = str(logging_section.get("level", "INFO")).upper()
    if log_level not in _LOG_LEVELS:
        errors.append(f"logging.level: unknown level {log_level!r}")
        log_level = "INFO"

    config = EngineConfig(
        config_id=str(data.get("config_id", "default")),
        version=_int(data, "version", 1, 1, "config", errors),
        store=StoreConfig(
            database_url=database_url.strip(),
            read_retries=_int(store, "read_retries", StoreConfig.read_retries, 0, "store", errors),
            retry_backoff_seconds=float(backoff),
            echo=bool(store.get("echo", False)),
        ),
        negotiation=NegotiationConfig(
            offer_limit=_int(negotiation, "offer_limit", NegotiationConfig.offer_limit, 1, "negotiation", errors),
        ),
        matching=MatchingConfig(
            fast_delivery_max_days=_int(
                matching, "fast_delivery_max_days", MatchingConfig.fast_delivery_max_days, 0, "matching", errors
            ),
        ),
        audit=AuditConfig(
            default_list_limit=_int(audit, "default_list_limit", AuditConfig.default_list_limit, 1, "audit", errors),
        ),
        log_level=log_level,
        checksum=compute_checksum(data),
    )

    if errors:
        raise ConfigValidationError(errors, source)
    return config


def load_engine_config(path: Path) -> EngineConfig:
    return parse_engine_config(load_yaml_file(path), str(path))
