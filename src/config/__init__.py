"""Configuration loading for the upload pipeline.

Configuration is loaded from a single YAML file (src/config/config.yaml by
default, overridable with ``--config`` or the UPLOAD_PIPELINE_CONFIG
environment variable).

Usage Examples
--------------

    >>> from config import load_config
    >>>
    >>> settings = load_config()
    >>> settings.queue("uploads").max_attempts
    3

Configuration Priority
----------------------

1. Explicit overrides passed to load_config()
2. Environment variables referenced from the YAML file (${VAR:-default})
3. YAML configuration file
4. Dataclass defaults
"""

from config.config import (
    LoggingSettings,
    NotificationSettings,
    PipelineSettings,
    QueueSettings,
    SinkSettings,
    StoreSettings,
    load_config,
    settings_from_dict,
)

__all__ = [
    "load_config",
    "settings_from_dict",
    "PipelineSettings",
    "QueueSettings",
    "NotificationSettings",
    "StoreSettings",
    "SinkSettings",
    "LoggingSettings",
]
