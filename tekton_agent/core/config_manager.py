import os
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from dotenv import load_dotenv

from tekton_agent.core.logging_utils import log_json
from tekton_agent.core.exceptions import ConfigurationError

# ---------------------------------------------------------------------------
# Value validators: each returns (is_valid: bool, coerced_value, reason: str)
# ---------------------------------------------------------------------------

def _validate_positive_int(key: str, val: Any) -> Tuple[bool, Any, str]:
    try:
        v = int(val)
        if v > 0:
            return True, v, ""
        return False, None, f"{key} must be a positive integer, got {val!r}"
    except (ValueError, TypeError):
        return False, None, f"{key} must be an integer, got {val!r}"


def _validate_non_negative_int(key: str, val: Any) -> Tuple[bool, Any, str]:
    try:
        v = int(val)
        if v >= 0:
            return True, v, ""
        return False, None, f"{key} must be >= 0, got {val!r}"
    except (ValueError, TypeError):
        return False, None, f"{key} must be an integer, got {val!r}"


def _validate_bool(key: str, val: Any) -> Tuple[bool, Any, str]:
    if isinstance(val, bool):
        return True, val, ""
    if isinstance(val, str) and val.lower() in ("true", "false", "1", "0", "yes", "no"):
        return True, val.lower() in ("true", "1", "yes"), ""
    return False, None, f"{key} must be a boolean, got {val!r}"


def _validate_string(key: str, val: Any) -> Tuple[bool, Any, str]:
    if val is None or isinstance(val, str):
        return True, val, ""
    return False, None, f"{key} must be a string, got {val!r}"


def _validate_float_range(key: str, val: Any, lo: float, hi: float) -> Tuple[bool, Any, str]:
    try:
        v = float(val)
        if lo <= v <= hi:
            return True, v, ""
        return False, None, f"{key} must be in [{lo}, {hi}], got {val!r}"
    except (ValueError, TypeError):
        return False, None, f"{key} must be a number, got {val!r}"


# Key → validator function (None = no validation, just pass through)
_KEY_VALIDATORS = {
    "max_memories":         lambda k, v: _validate_positive_int(k, v),
    "max_retries":          lambda k, v: _validate_non_negative_int(k, v),
    "retry_ceiling":        lambda k, v: _validate_non_negative_int(k, v),
    "recent_memory_window": lambda k, v: _validate_positive_int(k, v),
    "auto_apply_threshold": lambda k, v: _validate_float_range(k, v, 0.0, 1.0),
    "review_threshold":     lambda k, v: _validate_float_range(k, v, 0.0, 1.0),
    "idle_poll_seconds":    lambda k, v: _validate_float_range(k, v, 0.0, 3600.0),
    "llm_timeout":          lambda k, v: _validate_positive_int(k, v),
    "enable_llm":           lambda k, v: _validate_bool(k, v),
    "state_dir":            lambda k, v: _validate_string(k, v),
    "change_source":        lambda k, v: _validate_string(k, v),
    "openai_api_key":       lambda k, v: _validate_string(k, v),
    "openai_base":          lambda k, v: _validate_string(k, v),
    "openai_model":         lambda k, v: _validate_string(k, v),
}

DEFAULT_CONFIG = {
    "max_memories": 100,
    "max_retries": 3,
    "retry_ceiling": 3,
    "recent_memory_window": 5,
    "auto_apply_threshold": 0.7,
    "review_threshold": 0.7,
    "state_dir": ".agent-state",
    "enable_llm": None,  # None = derive from openai_api_key presence
    "openai_api_key": None,
    "openai_base": "https://api.openai.com/v1",
    "openai_model": "gpt-4o-mini",
    "llm_timeout": 60,
    "idle_poll_seconds": 1.0,
    "change_source": None,
}


class ConfigManager:
    """
    Centralized configuration manager for tekton-agent.
    Enforces a tiered strategy: (Overrides > ENV > JSON > Defaults).
    """
    def __init__(self, config_file="tekton-agent.config.json", overrides: Optional[Dict[str, Any]] = None,
                 load_env_file: bool = True):
        self.config_file = Path(config_file)
        self.runtime_overrides = dict(overrides or {})
        self.file_config = {}
        self.effective_config = {}

        if load_env_file:
            # .env never overrides variables already exported in the shell
            load_dotenv(override=False)
        self.refresh()

    def _load_from_file(self) -> Dict[str, Any]:
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            log_json("ERROR", "config_parse_failed", details={"path": str(self.config_file), "error": str(e)})
            raise ConfigurationError(f"Failed to parse config file: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {self.config_file} must contain a JSON object")
        log_json("INFO", "config_loaded_from_file", details={"path": str(self.config_file)})
        return data

    def _load_from_env(self) -> Dict[str, Any]:
        env_config = {}

        env_mappings = {
            "OPENAI_API_KEY": "openai_api_key",
            "OPENAI_BASE": "openai_base",
            "OPENAI_MODEL": "openai_model",
        }
        for env_key, config_key in env_mappings.items():
            if env_key in os.environ:
                env_config[config_key] = os.environ[env_key]

        # TEKTON_AGENT_* overrides for all keys in DEFAULT_CONFIG; values are
        # coerced later by the key validators.
        for key in DEFAULT_CONFIG:
            env_key = f"TEKTON_AGENT_{key.upper()}"
            if env_key in os.environ:
                env_config[key] = os.environ[env_key]
        return env_config

    def refresh(self):
        """Re-evaluates the effective configuration based on the tier hierarchy."""
        self.file_config = self._load_from_file()
        env_config = self._load_from_env()

        # Merge hierarchy: Defaults < JSON < ENV < Overrides
        merged = DEFAULT_CONFIG.copy()
        merged.update(self.file_config)
        merged.update(env_config)
        merged.update(self.runtime_overrides)

        self.effective_config = merged

    def _validate_value(self, key: str, value: Any) -> Any:
        """Validate *value* for *key*; return coerced value or DEFAULT_CONFIG fallback on error."""
        validator = _KEY_VALIDATORS.get(key)
        if validator is None or value is None:
            return value
        ok, coerced, reason = validator(key, value)
        if ok:
            return coerced
        default = DEFAULT_CONFIG.get(key)
        log_json("ERROR", "config_value_invalid",
                 details={"key": key, "value": value, "reason": reason,
                           "fallback": default})
        return default

    def get(self, key: str, default: Any = None) -> Any:
        """Retrieves a configuration value from the effective config."""
        val = self.effective_config.get(key, default)
        return self._validate_value(key, val) if key in _KEY_VALIDATORS else val

    def show_config(self) -> Dict[str, Any]:
        """Return the effective config dict (for diagnostics)."""
        return dict(self.effective_config)

    def set_runtime_override(self, key: str, value: Any):
        """Sets a temporary runtime override."""
        self.runtime_overrides[key] = value
        self.refresh()


@dataclass(frozen=True)
class AgentConfig:
    """Validated snapshot of the settings the decision core reads."""
    max_memories: int = DEFAULT_CONFIG["max_memories"]
    max_retries: int = DEFAULT_CONFIG["max_retries"]
    retry_ceiling: int = DEFAULT_CONFIG["retry_ceiling"]
    recent_memory_window: int = DEFAULT_CONFIG["recent_memory_window"]
    auto_apply_threshold: float = DEFAULT_CONFIG["auto_apply_threshold"]
    review_threshold: float = DEFAULT_CONFIG["review_threshold"]
    state_dir: str = DEFAULT_CONFIG["state_dir"]
    enable_llm: bool = False
    openai_api_key: Optional[str] = None
    openai_base: str = DEFAULT_CONFIG["openai_base"]
    openai_model: str = DEFAULT_CONFIG["openai_model"]
    llm_timeout: int = DEFAULT_CONFIG["llm_timeout"]
    idle_poll_seconds: float = DEFAULT_CONFIG["idle_poll_seconds"]
    change_source: Optional[str] = None

    @classmethod
    def from_manager(cls, manager: ConfigManager) -> "AgentConfig":
        api_key = manager.get("openai_api_key")
        enable_llm = manager.get("enable_llm")
        if enable_llm is None:
            enable_llm = bool(api_key)
        return cls(
            max_memories=manager.get("max_memories"),
            max_retries=manager.get("max_retries"),
            retry_ceiling=manager.get("retry_ceiling"),
            recent_memory_window=manager.get("recent_memory_window"),
            auto_apply_threshold=manager.get("auto_apply_threshold"),
            review_threshold=manager.get("review_threshold"),
            state_dir=manager.get("state_dir") or DEFAULT_CONFIG["state_dir"],
            enable_llm=enable_llm,
            openai_api_key=api_key,
            openai_base=manager.get("openai_base") or DEFAULT_CONFIG["openai_base"],
            openai_model=manager.get("openai_model") or DEFAULT_CONFIG["openai_model"],
            llm_timeout=manager.get("llm_timeout"),
            idle_poll_seconds=manager.get("idle_poll_seconds"),
            change_source=manager.get("change_source"),
        )

    def summary(self) -> Dict[str, Any]:
        """Loggable view of the config with the API key reduced to a flag."""
        return {
            "max_memories": self.max_memories,
            "max_retries": self.max_retries,
            "retry_ceiling": self.retry_ceiling,
            "auto_apply_threshold": self.auto_apply_threshold,
            "state_dir": self.state_dir,
            "enable_llm": self.enable_llm,
            "openai_model": self.openai_model,
        }
