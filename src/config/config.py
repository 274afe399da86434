"""Upload pipeline configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Per-queue retry settings (uploads, metadata, rejections)
- Notification addresses
- Catalog store and notification sink backends
- Logging and metrics

Environment variables ARE supported using ${VAR_NAME} and
${VAR_NAME:-default} syntax in YAML files.
"""

import json
import logging
import math
import os
import re
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from core.errors.exceptions import ConfigurationError

# Configure module logger
logger = logging.getLogger(__name__)

CONFIG_PATH_ENV_VAR = "UPLOAD_PIPELINE_CONFIG"

# Default config file: config/config.yaml in src/ directory
DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"

QUEUE_NAMES = ("uploads", "metadata", "rejections")
STORE_BACKENDS = ("memory", "json")
SINK_BACKENDS = ("memory", "log")


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _number(
    data: Dict[str, Any],
    key: str,
    default: Any,
    kind: type,
    context: str,
    errors: List[str],
) -> Any:
    """Read a numeric setting, recording an error and keeping the default if it won't convert."""
    value = data.get(key, default)
    expected = "an integer" if kind is int else "a number"
    try:
        if isinstance(value, bool) or value is None:
            raise TypeError(value)
        if kind is int and isinstance(value, float) and not value.is_integer():
            raise ValueError(value)
        converted = kind(value)
        if not math.isfinite(converted):
            raise ValueError(value)
    except (TypeError, ValueError):
        name = f"{context}.{key}" if context else key
        errors.append(f"{name} must be {expected}, got {value!r}")
        return default
    return converted


def _string_list(data: Dict[str, Any], key: str, default: List[str], errors: List[str]) -> List[str]:
    """Read a list-of-strings setting. A bare string is an error, not a list of characters."""
    value = data.get(key, default)
    if not isinstance(value, (list, tuple)):
        errors.append(f"{key} must be a list, got {value!r}")
        return list(default)
    return [str(item) for item in value]


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


@dataclass
class QueueSettings:
    """Retry and polling settings for one durable queue and its workers."""

    max_attempts: int = 3
    visibility_timeout_seconds: float = 30.0
    batch_size: int = 5
    worker_count: int = 1
    poll_interval_seconds: float = 0.5

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        context: str = "queue",
        errors: Optional[List[str]] = None,
    ) -> "QueueSettings":
        """Build settings from a mapping, converting YAML strings to numbers.

        Conversion problems are appended to ``errors`` when given; otherwise
        they raise ConfigurationError straight away.
        """
        defaults = cls()
        collected: List[str] = []
        settings = cls(
            max_attempts=_number(data, "max_attempts", defaults.max_attempts, int, context, collected),
            visibility_timeout_seconds=_number(
                data,
                "visibility_timeout_seconds",
                defaults.visibility_timeout_seconds,
                float,
                context,
                collected,
            ),
            batch_size=_number(data, "batch_size", defaults.batch_size, int, context, collected),
            worker_count=_number(data, "worker_count", defaults.worker_count, int, context, collected),
            poll_interval_seconds=_number(
                data,
                "poll_interval_seconds",
                defaults.poll_interval_seconds,
                float,
                context,
                collected,
            ),
        )
        if errors is not None:
            errors.extend(collected)
        elif collected:
            raise ConfigurationError("; ".join(collected), errors=collected)
        return settings

    def collect_errors(self, context: str) -> List[str]:
        errors = []
        if self.max_attempts < 1:
            errors.append(f"{context}.max_attempts must be >= 1, got {self.max_attempts}")
        if self.visibility_timeout_seconds <= 0:
            errors.append(
                f"{context}.visibility_timeout_seconds must be > 0, "
                f"got {self.visibility_timeout_seconds}"
            )
        if self.batch_size < 1:
            errors.append(f"{context}.batch_size must be >= 1, got {self.batch_size}")
        if self.worker_count < 1:
            errors.append(f"{context}.worker_count must be >= 1, got {self.worker_count}")
        if self.poll_interval_seconds < 0:
            errors.append(
                f"{context}.poll_interval_seconds must be >= 0, got {self.poll_interval_seconds}"
            )
        return errors


@dataclass
class NotificationSettings:
    sender: str = "noreply@example.com"
    recipient: str = ""


@dataclass
class StoreSettings:
    backend: str = "memory"
    path: str = "data/catalog"


@dataclass
class SinkSettings:
    backend: str = "log"


@dataclass
class LoggingSettings:
    level: str = "INFO"
    json_format: bool = True
    log_dir: str = "logs"
    log_to_stdout: bool = True


@dataclass
class PipelineSettings:
    """Upload pipeline configuration.

    Configuration structure:
        pipeline:
          queues:
            uploads: {...}       # Logger consumer queue (dead-letters to rejections)
            metadata: {...}      # Metadata updater queue
            rejections: {...}    # Rejection notifier, reads the uploads DLQ
          accepted_file_types: [jpeg, png]
          metadata_types: [Caption, Date, Photographer]
          notifications: {sender, recipient}
          store: {backend, path}
          sink: {backend}
          logging: {level, json_format, log_dir, log_to_stdout}
          metrics_port: 0
    """

    queues: Dict[str, QueueSettings] = field(
        default_factory=lambda: {
            "uploads": QueueSettings(),
            "metadata": QueueSettings(),
            "rejections": QueueSettings(batch_size=10),
        }
    )
    accepted_file_types: List[str] = field(default_factory=lambda: ["jpeg", "png"])
    metadata_types: List[str] = field(default_factory=lambda: ["Caption", "Date", "Photographer"])
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    sink: SinkSettings = field(default_factory=SinkSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    metrics_port: int = 0

    def queue(self, name: str) -> QueueSettings:
        if name not in self.queues:
            raise ConfigurationError(
                f"Queue '{name}' not configured. Available queues: {sorted(self.queues)}"
            )
        return self.queues[name]

    def validate(self) -> None:
        """Validate configuration, reporting every problem at once.

        Raises:
            ConfigurationError: If any setting is invalid
        """
        errors: List[str] = []

        for name in QUEUE_NAMES:
            if name not in self.queues:
                errors.append(f"queues.{name} is required")
        for name, settings in self.queues.items():
            errors.extend(settings.collect_errors(f"queues.{name}"))

        if not self.accepted_file_types:
            errors.append("accepted_file_types must not be empty")
        if not self.metadata_types:
            errors.append("metadata_types must not be empty")
        if not self.notifications.recipient:
            errors.append("notifications.recipient is required")
        if self.store.backend not in STORE_BACKENDS:
            errors.append(
                f"store.backend must be one of {list(STORE_BACKENDS)}, got '{self.store.backend}'"
            )
        if self.sink.backend not in SINK_BACKENDS:
            errors.append(
                f"sink.backend must be one of {list(SINK_BACKENDS)}, got '{self.sink.backend}'"
            )
        if not 0 <= self.metrics_port <= 65535:
            errors.append(f"metrics_port must be between 0 and 65535, got {self.metrics_port}")

        if errors:
            raise ConfigurationError(
                f"Invalid configuration ({len(errors)} error(s)): " + "; ".join(errors),
                errors=errors,
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def settings_from_dict(data: Dict[str, Any]) -> PipelineSettings:
    """Build PipelineSettings from the ``pipeline:`` section of a config file.

    Raises:
        ConfigurationError: If any value cannot be converted to its setting's type
    """
    defaults = PipelineSettings()
    errors: List[str] = []

    queues = dict(defaults.queues)
    for name, queue_data in (data.get("queues") or {}).items():
        if not isinstance(queue_data or {}, dict):
            errors.append(f"queues.{name} must be a mapping, got {queue_data!r}")
            continue
        base = asdict(queues.get(name, QueueSettings()))
        queues[name] = QueueSettings.from_dict(
            _deep_merge(base, queue_data or {}), context=f"queues.{name}", errors=errors
        )

    notifications = data.get("notifications") or {}
    store = data.get("store") or {}
    sink = data.get("sink") or {}
    log_settings = data.get("logging") or {}

    accepted_file_types = _string_list(
        data, "accepted_file_types", defaults.accepted_file_types, errors
    )
    metadata_types = _string_list(data, "metadata_types", defaults.metadata_types, errors)
    metrics_port = _number(data, "metrics_port", defaults.metrics_port, int, "", errors)

    if errors:
        raise ConfigurationError(
            f"Invalid configuration ({len(errors)} error(s)): " + "; ".join(errors),
            errors=errors,
        )

    return PipelineSettings(
        queues=queues,
        accepted_file_types=[t.lower() for t in accepted_file_types],
        metadata_types=metadata_types,
        notifications=NotificationSettings(
            sender=str(notifications.get("sender", defaults.notifications.sender)),
            recipient=str(notifications.get("recipient", defaults.notifications.recipient)),
        ),
        store=StoreSettings(
            backend=str(store.get("backend", defaults.store.backend)),
            path=str(store.get("path", defaults.store.path)),
        ),
        sink=SinkSettings(backend=str(sink.get("backend", defaults.sink.backend))),
        logging=LoggingSettings(
            level=str(log_settings.get("level", defaults.logging.level)).upper(),
            json_format=_as_bool(log_settings.get("json_format", defaults.logging.json_format)),
            log_dir=str(log_settings.get("log_dir", defaults.logging.log_dir)),
            log_to_stdout=_as_bool(
                log_settings.get("log_to_stdout", defaults.logging.log_to_stdout)
            ),
        ),
        metrics_port=metrics_port,
    )


def resolve_config_path(config_path: Optional[Path] = None) -> Path:
    if config_path is not None:
        return config_path
    env_path = os.getenv(CONFIG_PATH_ENV_VAR)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> PipelineSettings:
    """Load pipeline configuration from a YAML file.

    Resolution order for the file: explicit ``config_path``, then the
    UPLOAD_PIPELINE_CONFIG environment variable, then src/config/config.yaml.
    """
    config_path = resolve_config_path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n" f"Expected file: config/config.yaml"
        )

    logger.info(f"Loading configuration from file: {config_path}")
    yaml_data = _expand_env_vars(load_yaml(config_path))

    if "pipeline" not in yaml_data:
        raise ConfigurationError(
            "Invalid config file: missing 'pipeline:' section\n"
            "See src/config/config.yaml for correct structure"
        )

    pipeline_data = yaml_data["pipeline"] or {}
    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        pipeline_data = _deep_merge(pipeline_data, overrides)

    settings = settings_from_dict(pipeline_data)

    logger.debug("Validating configuration...")
    settings.validate()
    logger.debug("Configuration validation passed")

    return settings


def _cli_main() -> int:
    """CLI entry point for config validation and debugging."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Upload Pipeline Configuration Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate configuration
  python -m config.config --validate

  # Show resolved configuration
  python -m config.config --show

  # JSON output for automation
  python -m config.config --validate --json
        """,
    )
    parser.add_argument("--validate", action="store_true", help="Validate configuration")
    parser.add_argument("--show", action="store_true", help="Display resolved configuration")
    parser.add_argument("--config", type=Path, help="Path to config.yaml file")
    parser.add_argument("--json", action="store_true", help="Output in JSON format")

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    if not args.validate and not args.show:
        parser.print_help()
        return 0

    try:
        settings = load_config(config_path=args.config)
    except (FileNotFoundError, ConfigurationError) as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"Error: {e}", file=sys.stderr)
        return 1

    output: Dict[str, Any] = {}
    if args.validate:
        if args.json:
            output["validation"] = {"passed": True, "errors": []}
        else:
            print("Configuration validation passed")
    if args.show:
        if args.json:
            output["config"] = settings.to_dict()
        else:
            print(yaml.dump(settings.to_dict(), default_flow_style=False, sort_keys=False))
    if args.json:
        print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(_cli_main())
