"""
shipment_config: single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``EngineConfig``.  No other
    component reads configuration files or environment variables.

Architecture position:
    Configuration: sits beside ``shipment_kernel``.  The kernel services
    take plain values (offer limit, retry budget, ...) and never import this
    package; the ``BrokerageEngine`` facade translates an ``EngineConfig``
    into those values.

Resolution order:
    1. The ``path`` argument.
    2. The file named by ``SHIPMENT_ENGINE_CONFIG``.
    3. ``sets/default.yaml`` shipped with the package.

Failure modes:
    - ``FileNotFoundError``: the resolved file does not exist.
    - ``ConfigValidationError``: invalid values.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from shipment_config.loader import load_engine_config, parse_engine_config
from shipment_config.schema import ConfigValidationError, EngineConfig

_logger = logging.getLogger("shipment_kernel.config")

CONFIG_ENV_VAR = "SHIPMENT_ENGINE_CONFIG"

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> EngineConfig:
    """The ONLY public configuration entrypoint."""
    resolved = Path(path) if path is not None else None
    if resolved is None and os.environ.get(CONFIG_ENV_VAR):
        resolved = Path(os.environ[CONFIG_ENV_VAR])
    if resolved is None:
        resolved = _DEFAULT_CONFIG_FILE

    config = load_engine_config(resolved)

    _logger.info(
        "SHIPMENT_CONFIG_TRACE",
        extra={
            "trace_type": "SHIPMENT_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(resolved),
        },
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "ConfigValidationError",
    "EngineConfig",
    "get_active_config",
    "parse_engine_config",
]
