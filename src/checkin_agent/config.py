from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigError

LOGGER = logging.getLogger("checkin_agent.config")

DEFAULT_CONFIG_PATH = Path("config") / "checkin.json"
CONFIG_ENV_VAR = "CHECKIN_CONFIG"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)


@dataclass(frozen=True)
class TargetConfig:
    """One site to check into. Read-only once loaded."""

    id: str
    display_name: str
    enabled: bool = True
    url: str = ""
    driver: str = "selector"
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Credentials:
    """Login material for one target, sourced from the environment."""

    username: str
    secret: str = field(repr=False)


@dataclass
class BrowserConfig:
    """Launch settings for the headless browser."""

    headless: bool = True
    timeout_ms: int = 30000
    user_agent: str = DEFAULT_USER_AGENT
    viewport_width: int = 1920
    viewport_height: int = 1080
    locale: Optional[str] = None


@dataclass
class SessionConfig:
    """Where cached sessions live and how long they are trusted."""

    directory: Path = Path("sessions")
    ttl_days: float = 7.0


@dataclass
class OrchestratorConfig:
    inter_target_delay_seconds: float = 3.0
    max_concurrency: Optional[int] = None


@dataclass(frozen=True)
class SchedulePreset:
    name: str
    cron_expression: str
    description: str = ""
    parallel: bool = False


@dataclass
class ScheduleConfig:
    """Defaults consumed by the scheduler at startup."""

    cron_expression: str = "0 8 * * *"
    parallel: bool = False
    target_filter: Tuple[str, ...] = ()
    timezone: Optional[str] = None
    retry_on_failure: bool = True
    max_retries: int = 3
    retry_delay_ms: int = 300000
    presets: List[SchedulePreset] = field(default_factory=lambda: list(DEFAULT_PRESETS))

    @property
    def retry_delay_seconds(self) -> float:
        return self.retry_delay_ms / 1000.0

    def preset(self, name: str) -> Optional[SchedulePreset]:
        for preset in self.presets:
            if preset.name == name:
                return preset
        return None


@dataclass
class LoggingConfig:
    level: str = "INFO"
    log_dir: Optional[Path] = None


@dataclass
class AppConfig:
    """Top level configuration consumed throughout the engine."""

    source_path: Optional[Path] = None
    targets: List[TargetConfig] = field(default_factory=list)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def enabled_targets(self) -> List[TargetConfig]:
        """Enabled targets in configured order."""
        return [target for target in self.targets if target.enabled]

    def find_target(self, target_id: str) -> Optional[TargetConfig]:
        for target in self.targets:
            if target.id == target_id:
                return target
        return None

    @property
    def scheduler_state_path(self) -> Path:
        return self.sessions.directory.parent / "scheduler.json"


DEFAULT_PRESETS: Tuple[SchedulePreset, ...] = (
    SchedulePreset(name="morning", cron_expression="0 8 * * *", description="Every day at 08:00"),
    SchedulePreset(name="morning-9am", cron_expression="0 9 * * *", description="Every day at 09:00"),
    SchedulePreset(name="workdays", cron_expression="0 8 * * 1-5", description="Weekdays at 08:00"),
)


def resolve_config_path(path: Optional[Path]) -> Optional[Path]:
    """Pick the explicit path, then $CHECKIN_CONFIG, then the default file if it exists."""
    if path is not None:
        return Path(path)
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    if DEFAULT_CONFIG_PATH.exists():
        return DEFAULT_CONFIG_PATH
    return None


def load_config(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    Load configuration from *path* (JSON) and apply environment overrides.

    A ``.env`` file in the working directory is loaded first so credentials and
    overrides can live next to the config file. Unspecified fields fall back to
    the dataclass defaults above.
    """
    load_dotenv(override=False)
    env = os.environ if environ is None else environ

    config = AppConfig()
    resolved = resolve_config_path(path)
    if resolved is not None:
        try:
            with resolved.expanduser().open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError as exc:
            raise ConfigError(f"Config file {resolved} does not exist") from exc
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Config file {resolved} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {resolved} must contain a JSON object")
        config.source_path = resolved
        _apply_config_updates(config, data)

    _apply_env_overrides(config, env)
    return config


def credentials_for(target_id: str, environ: Optional[Mapping[str, str]] = None) -> Credentials:
    """Read ``<ID>_USERNAME`` / ``<ID>_PASSWORD`` for *target_id*."""
    env = os.environ if environ is None else environ
    prefix = target_id.upper().replace("-", "_")
    username = env.get(f"{prefix}_USERNAME")
    secret = env.get(f"{prefix}_PASSWORD")
    if not username or not secret:
        raise ConfigError(
            f"Incomplete credentials for target {target_id}: set {prefix}_USERNAME and {prefix}_PASSWORD",
            target_id=target_id,
        )
    return Credentials(username=username, secret=secret)


def _apply_config_updates(config: AppConfig, payload: Dict[str, Any]) -> None:
    """Update *config* in-place using keys from the *payload* dict."""
    if "targets" in payload:
        config.targets = _parse_targets(payload["targets"])

    if "browser" in payload:
        browser = payload["browser"]
        for key, value in browser.items():
            if key == "viewport" and isinstance(value, dict):
                config.browser.viewport_width = int(value.get("width", config.browser.viewport_width))
                config.browser.viewport_height = int(value.get("height", config.browser.viewport_height))
            elif hasattr(config.browser, key):
                setattr(config.browser, key, value)

    if "sessions" in payload:
        sessions = payload["sessions"]
        if "directory" in sessions:
            config.sessions.directory = Path(sessions["directory"])
        if "ttl_days" in sessions:
            config.sessions.ttl_days = float(sessions["ttl_days"])

    if "orchestrator" in payload:
        for key, value in payload["orchestrator"].items():
            if hasattr(config.orchestrator, key):
                setattr(config.orchestrator, key, value)

    if "schedule" in payload:
        schedule = payload["schedule"]
        for key, value in schedule.items():
            if key == "target_filter":
                config.schedule.target_filter = tuple(value or ())
            elif key == "presets":
                config.schedule.presets = [_parse_preset(item) for item in value]
            elif hasattr(config.schedule, key):
                setattr(config.schedule, key, value)

    if "logging" in payload:
        logging_payload = payload["logging"]
        if "level" in logging_payload:
            config.logging.level = str(logging_payload["level"]).upper()
        if logging_payload.get("log_dir"):
            config.logging.log_dir = Path(logging_payload["log_dir"])


def _apply_env_overrides(config: AppConfig, env: Mapping[str, str]) -> None:
    if "HEADLESS" in env:
        config.browser.headless = env["HEADLESS"].strip().lower() in {"1", "true", "yes"}
    if env.get("BROWSER_TIMEOUT"):
        try:
            config.browser.timeout_ms = int(env["BROWSER_TIMEOUT"])
        except ValueError as exc:
            raise ConfigError(f"BROWSER_TIMEOUT must be an integer, got {env['BROWSER_TIMEOUT']!r}") from exc
    if env.get("LOG_LEVEL"):
        config.logging.level = env["LOG_LEVEL"].upper()
    if env.get("CHECKIN_SESSION_DIR"):
        config.sessions.directory = Path(env["CHECKIN_SESSION_DIR"])


def _parse_targets(items: Any) -> List[TargetConfig]:
    if not isinstance(items, list):
        raise ConfigError("'targets' must be a list")
    targets: List[TargetConfig] = []
    seen = set()
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            LOGGER.error("Skipping target #%d: not an object", index)
            continue
        target_id = str(item.get("id") or item.get("name") or "").strip()
        if not target_id:
            LOGGER.error("Skipping target #%d: missing an id", index)
            continue
        if target_id in seen:
            LOGGER.error("Skipping target #%d: duplicate id %r", index, target_id)
            continue
        seen.add(target_id)
        targets.append(
            TargetConfig(
                id=target_id,
                display_name=item.get("display_name") or item.get("displayName") or target_id,
                enabled=bool(item.get("enabled", True)),
                url=item.get("url", ""),
                driver=item.get("driver", "selector"),
                options=dict(item.get("options", {})),
            )
        )
    return targets


def _parse_preset(item: Dict[str, Any]) -> SchedulePreset:
    try:
        return SchedulePreset(
            name=item["name"],
            cron_expression=item["cron_expression"],
            description=item.get("description", ""),
            parallel=bool(item.get("parallel", False)),
        )
    except KeyError as exc:
        raise ConfigError(f"Schedule preset is missing {exc.args[0]!r}") from exc
