"""Patch settings: plain values loaded from a JSON file.

Example:

    {
      "thinking_verbs": ["Pondering", "Brewing"],
      "thinker_format": "{} ...",
      "thinker_symbols": ["+", "x"],
      "thinker_speed": 80,
      "token_count_rounding": 100,
      "context_limit_env": true,
      "subagent_models": {"plan": "claude-opus-4-1"},
      "themes": [{"id": "dark", "name": "Dark", "colors": {"text": "#fff"}}]
    }

Anything left out keeps its default, which leaves that patch disabled.
"""
import json
import logging
from dataclasses import dataclass, field, fields
from typing import Dict, List, Optional

from .errors import SettingsError

LOG = logging.getLogger(__name__)


@dataclass
class Theme:
    id: str
    name: str
    colors: Dict[str, str] = field(default_factory=dict)


@dataclass
class PatchSettings:
    themes: List[Theme] = field(default_factory=list)
    thinking_verbs: List[str] = field(default_factory=list)
    thinker_format: Optional[str] = None
    thinker_symbols: List[str] = field(default_factory=list)
    thinker_speed: Optional[int] = None
    token_count_rounding: Optional[int] = None
    auto_accept_plan_mode: bool = False
    swarm_mode: bool = False
    context_limit_env: bool = False
    show_thinking: bool = False
    style_thinking_label: bool = False
    suppress_rate_limit_options: bool = False
    remove_new_session_shortcut: bool = False
    allow_bypass_perms_in_sudo: bool = False
    mcp_nonblocking: bool = False
    mcp_batch_size: Optional[int] = None
    subagent_models: Dict[str, str] = field(default_factory=dict)

    def enabled(self, name: str) -> bool:
        value = getattr(self, name)
        return value is not None and value is not False and value != [] and value != "" and value != {}


_STR_LISTS = ("thinking_verbs", "thinker_symbols")
_POSITIVE_INTS = ("thinker_speed", "token_count_rounding", "mcp_batch_size")
SUBAGENT_KEYS = ("plan", "explore", "general_purpose")


def _theme(raw, idx) -> Theme:
    if not isinstance(raw, dict) or not isinstance(raw.get("id"), str) or not isinstance(raw.get("name"), str):
        raise SettingsError(f"themes[{idx}] needs string 'id' and 'name'")
    colors = raw.get("colors", {})
    if not isinstance(colors, dict):
        raise SettingsError(f"themes[{idx}].colors must be an object")
    return Theme(raw["id"], raw["name"], dict(colors))


def settings_from_dict(raw: dict) -> PatchSettings:
    if not isinstance(raw, dict):
        raise SettingsError("settings must be a JSON object")
    known = {f.name for f in fields(PatchSettings)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise SettingsError(f"unknown settings: {', '.join(unknown)}")

    values = {}
    for key, value in raw.items():
        if key == "themes":
            if not isinstance(value, list):
                raise SettingsError("themes must be a list")
            values[key] = [_theme(t, i) for i, t in enumerate(value)]
        elif key in _STR_LISTS:
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise SettingsError(f"{key} must be a list of strings")
            values[key] = list(value)
        elif key in _POSITIVE_INTS:
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value <= 0):
                raise SettingsError(f"{key} must be a positive integer")
            values[key] = value
        elif key == "subagent_models":
            if not isinstance(value, dict) or not all(isinstance(v, str) and v for v in value.values()):
                raise SettingsError("subagent_models must map agent names to model strings")
            bad = sorted(set(value) - set(SUBAGENT_KEYS))
            if bad:
                raise SettingsError(f"subagent_models: unknown agent(s) {', '.join(bad)}")
            values[key] = dict(value)
        elif key == "thinker_format":
            if value is not None and not isinstance(value, str):
                raise SettingsError("thinker_format must be a string")
            values[key] = value
        else:
            if not isinstance(value, bool):
                raise SettingsError(f"{key} must be true or false")
            values[key] = value
    return PatchSettings(**values)


def load_settings(path) -> PatchSettings:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            raw = json.load(fh)
    except json.JSONDecodeError as e:
        raise SettingsError(f"{path}: invalid JSON: {e}") from e
    settings = settings_from_dict(raw)
    LOG.debug("loaded settings from %s: %s", path, sorted(raw))
    return settings
