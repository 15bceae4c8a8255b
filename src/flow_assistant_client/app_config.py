from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from flow_assistant_client.polling.cadence import CadencePolicy
from flow_assistant_client.polling.controller import DeliveryMode

DEFAULT_API_BASE_URL = "https://api.flowhunt.io"


@dataclass
class RuntimeEnv:
    access_token: str
    access_token_env_var: str
    api_base_url: str | None


@dataclass
class AppConfig:
    api_base_url: str
    request_timeout_seconds: float
    max_retry_attempts: int
    flow_id: str | None
    workspace_id: str | None
    session_name: str
    poll_min_interval_ms: int
    poll_max_interval_ms: int
    poll_growth_factor: float
    poll_empty_threshold: int
    poll_timeout_seconds: float | None
    delivery_mode: DeliveryMode
    degraded_after_failures: int
    log_level: str
    console_log_level: str
    log_consumers: list | None

    def cadence_policy(self) -> CadencePolicy:
        return CadencePolicy(
            min_interval_ms=self.poll_min_interval_ms,
            max_interval_ms=self.poll_max_interval_ms,
            growth_factor=self.poll_growth_factor,
            empty_poll_threshold=self.poll_empty_threshold,
        )


def load_json_config(path: Path | None = None) -> dict:
    config_path = path or Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _optional_str(value: object) -> str | None:
    text = str(value or "").strip()
    return text or None


def _parse_delivery_mode(value: object) -> DeliveryMode:
    text = str(value or DeliveryMode.AT_MOST_ONCE.value).strip().lower().replace("-", "_")
    try:
        return DeliveryMode(text)
    except ValueError:
        raise ValueError(
            f"Unknown DeliveryMode: {value!r}. Supported: 'at_most_once', 'at_least_once'"
        ) from None


def parse_app_config(config: dict, env: RuntimeEnv | None = None) -> AppConfig:
    poll_timeout = float(config.get("PollTimeoutSeconds", 30))
    api_base_url = (env.api_base_url if env else None) or config.get("ApiBaseUrl", DEFAULT_API_BASE_URL)
    return AppConfig(
        api_base_url=str(api_base_url).rstrip("/"),
        request_timeout_seconds=float(config.get("RequestTimeoutSeconds", 30)),
        max_retry_attempts=int(config.get("MaxRetryAttempts", 3)),
        flow_id=_optional_str(config.get("FlowId")),
        workspace_id=_optional_str(config.get("WorkspaceId")),
        session_name=str(config.get("SessionName", "Flow Assistant Session")),
        poll_min_interval_ms=int(config.get("PollMinIntervalMs", 500)),
        poll_max_interval_ms=int(config.get("PollMaxIntervalMs", 5000)),
        poll_growth_factor=float(config.get("PollGrowthFactor", 1.5)),
        poll_empty_threshold=int(config.get("PollEmptyThreshold", 10)),
        poll_timeout_seconds=poll_timeout if poll_timeout > 0 else None,
        delivery_mode=_parse_delivery_mode(config.get("DeliveryMode")),
        degraded_after_failures=int(config.get("DegradedAfterFailures", 3)),
        log_level=config.get("LogLevel", "INFO"),
        console_log_level=str(config.get("ConsoleLogLevel", "WARNING")).upper(),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        access_token=os.environ.get("FLOW_ASSISTANT_ACCESS_TOKEN", ""),
        access_token_env_var="FLOW_ASSISTANT_ACCESS_TOKEN",
        api_base_url=_optional_str(os.environ.get("FLOW_ASSISTANT_API_BASE_URL")),
    )
