"""Patch table and the batch driver.

Each patch lists its candidate locators newest first. The driver recomputes
locations against the current text before every patch, so the output of one
patch is the input of the next. A patch that cannot be applied is reported
and skipped; the others still run.
"""
import enum
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Tuple

from ..errors import AlreadyPatched, PatchError, PatternNotFound
from ..settings import SUBAGENT_KEYS, PatchSettings
from . import helpers, locators
from .location import Edit, LocationResult, apply_edits

LOG = logging.getLogger(__name__)


class PatchStatus(enum.Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    NOT_FOUND = "not_found"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class PatchOutcome:
    patch_id: str
    status: PatchStatus
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status in (PatchStatus.APPLIED, PatchStatus.ALREADY_APPLIED, PatchStatus.SKIPPED)


@dataclass
class PatchRun:
    text: str
    outcomes: List[PatchOutcome] = field(default_factory=list)

    @property
    def failed(self) -> List[PatchOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def changed(self) -> bool:
        return any(o.status is PatchStatus.APPLIED for o in self.outcomes)


@dataclass(frozen=True)
class PatchDefinition:
    patch_id: str
    description: str
    setting: str
    candidates: Tuple[Callable[[str], Any], ...]
    render: Callable[[str, Any, Any], List[Edit]]
    is_applied: Optional[Callable[[str], bool]] = None


def js_json(value) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


# ------------------------------------------------------------------ renderers

def render_themes(text, found: locators.ThemeLocations, themes) -> List[Edit]:
    names = "return" + js_json({t.id: t.name for t in themes})
    options = js_json([{"label": t.name, "value": t.id} for t in themes])
    var = found.switch.identifiers[0]
    cases = "".join(f'case"{t.id}":return{js_json(t.colors)};\n' for t in themes)
    switch = f"switch({var}){{\n{cases}default:return{js_json(themes[0].colors)};\n}}"
    return [(found.names, names), (found.options, options), (found.switch, switch)]


def past_tense(verb: str) -> str:
    return re.sub(r"ing$", "ed", verb)


def render_thinking_verbs(text, found: List[LocationResult], verbs) -> List[Edit]:
    edits = []
    for loc in found:
        words = verbs if loc.variant == "present" else [past_tense(v) for v in verbs]
        edits.append((loc, js_json(words)))
    return edits


def render_thinker_format(text, found: LocationResult, fmt: str) -> List[Edit]:
    expr = found.identifiers[0]
    escaped = fmt.replace("\\", "\\\\").replace("`", "\\`")
    template = "`" + escaped.replace("{}", "${" + expr + "}") + "`"
    return [(found, "=" + template)]


def render_all(text, found: List[LocationResult], value) -> List[Edit]:
    replacement = js_json(value)
    return [(loc, replacement) for loc in found]


def render_speed(text, found: LocationResult, speed: int) -> List[Edit]:
    return [(found, f"{found.identifiers[0]}{speed}")]


def render_token_rounding(text, found: LocationResult, base: int) -> List[Edit]:
    pre, expr, post = found.identifiers
    return [(found, f"{pre}Math.round(({expr})/{base})*{base}{post}")]


def render_plan_mode(text, found: LocationResult, _) -> List[Edit]:
    return [(found, f'{found.identifiers[0]}("yes-accept-edits");return null;')]


def render_swarm_gate(text, found: LocationResult, _) -> List[Edit]:
    return [(found, f"function {found.identifiers[0]}(){{return!0}}")]


def render_context_limit(text, found: LocationResult, _) -> List[Edit]:
    return [(found, locators.CONTEXT_ENV_CHECK)]


def render_thinking_visibility(text, found: LocationResult, _) -> List[Edit]:
    if found.variant == "remove":
        return [(found, "")]
    case, middle, closer = found.identifiers
    return [(found, f"{case}{middle}true{closer}")]


def render_thinking_label(text, found: LocationResult, _) -> List[Edit]:
    box = helpers.find_box_component(text)
    label_text = helpers.find_text_component(text)
    react = helpers.get_react_var(text)
    missing = [n for n, v in (("Box", box), ("Text", label_text), ("React", react)) if not v]
    if missing:
        raise PatchError(f"could not find {', '.join(missing)} identifier(s)", "thinking_label")
    label = found.identifiers[2]
    return [(found, f"{react}.createElement({box},null,{react}.createElement("
                    f"{label_text},{{italic:true,dimColor:true}},{label}))")]


def render_number(text, found: LocationResult, value: int) -> List[Edit]:
    return [(found, str(value))]


def render_subagent_models(text, found: locators.SubagentLocations, models) -> List[Edit]:
    edits = []
    for key in SUBAGENT_KEYS:
        model = models.get(key)
        if not model:
            continue
        loc = getattr(found, key)
        if loc is None:
            raise PatchError(f"{key} agent definition not found", "subagent_models")
        literal = js_json(model)
        if loc.variant == "insert":
            edits.append((loc, f"{loc.identifiers[0]}model:{literal}"))
        else:
            edits.append((loc, literal[1:-1]))
    return edits


def render_constant(replacement: str):
    def render(text, found, _):
        if isinstance(found, list):
            return [(loc, replacement) for loc in found]
        return [(found, replacement)]
    return render


# ------------------------------------------------------------------ applied checks

def context_limit_patched(text: str) -> bool:
    return locators.CONTEXT_ENV_CHECK in text


def swarm_mode_enabled(text: str) -> bool:
    return locators.detect_swarm_mode_state(text) == locators.SWARM_ENABLED


def thinking_label_styled(text: str) -> bool:
    anchor = text.find(locators.THINKING_LABEL_ANCHOR)
    if anchor == -1:
        return False
    window = text[anchor:anchor + locators.THINKING_LABEL_WINDOW]
    return "{italic:true,dimColor:true}" in window


PATCHES: Tuple[PatchDefinition, ...] = (
    PatchDefinition("themes", "replace the built-in color themes", "themes",
                    (locators.locate_themes,), render_themes),
    PatchDefinition("thinking_verbs", "custom spinner verbs (present and past tense)", "thinking_verbs",
                    (locators.locate_thinking_verbs,), render_thinking_verbs),
    PatchDefinition("thinker_format", "spinner line format, {} is the verb", "thinker_format",
                    (locators.locate_thinker_format, locators.locate_thinker_format_legacy),
                    render_thinker_format),
    PatchDefinition("thinker_symbols", "spinner glyphs", "thinker_symbols",
                    (locators.locate_thinker_symbols,), render_all),
    PatchDefinition("thinker_speed", "spinner frame interval in ms", "thinker_speed",
                    (locators.locate_thinker_speed, locators.locate_thinker_speed_legacy),
                    render_speed),
    PatchDefinition("token_count_rounding", "round the live token counter", "token_count_rounding",
                    (locators.locate_token_count, locators.locate_token_count_legacy),
                    render_token_rounding),
    PatchDefinition("auto_accept_plan_mode", "accept plan mode with auto-accept edits", "auto_accept_plan_mode",
                    (locators.locate_plan_mode_prompt,), render_plan_mode,
                    locators.plan_mode_auto_accepted),
    PatchDefinition("swarm_mode", "force the agent swarm gate on", "swarm_mode",
                    (locators.locate_swarm_gate,), render_swarm_gate, swarm_mode_enabled),
    PatchDefinition("context_limit", "honor CLAUDE_CODE_CONTEXT_LIMIT", "context_limit_env",
                    (locators.locate_context_limit, locators.locate_context_limit_legacy),
                    render_context_limit, context_limit_patched),
    PatchDefinition("thinking_visibility", "always show thinking blocks", "show_thinking",
                    (locators.locate_thinking_visibility, locators.locate_thinking_visibility_legacy),
                    render_thinking_visibility),
    PatchDefinition("thinking_label", "italic dim thinking label", "style_thinking_label",
                    (locators.locate_thinking_label,), render_thinking_label, thinking_label_styled),
    PatchDefinition("suppress_rate_limit_options", "no-op the rate limit options callback",
                    "suppress_rate_limit_options",
                    (locators.locate_rate_limit_callbacks,), render_constant("()=>{}")),
    PatchDefinition("remove_new_session_shortcut", "move new session off Cmd/Ctrl+K",
                    "remove_new_session_shortcut",
                    (locators.locate_new_session_shortcut,), render_constant('"Cmd+Shift+T"')),
    PatchDefinition("allow_bypass_perms_in_sudo", "allow --dangerously-skip-permissions as root",
                    "allow_bypass_perms_in_sudo",
                    (locators.locate_sudo_refusal,), render_constant("{}")),
    PatchDefinition("mcp_nonblocking", "do not block startup on MCP connections", "mcp_nonblocking",
                    (locators.locate_mcp_nonblocking_check,), render_constant("false"),
                    locators.mcp_nonblocking_forced),
    PatchDefinition("mcp_batch_size", "MCP servers connected in parallel", "mcp_batch_size",
                    (locators.locate_mcp_batch_size,), render_number),
    PatchDefinition("subagent_models", "model for the Plan, Explore and general-purpose agents",
                    "subagent_models", (locators.locate_subagent_models,), render_subagent_models),
)

PATCHES_BY_ID = {p.patch_id: p for p in PATCHES}


def apply_patch(text: str, patch: PatchDefinition, value) -> Tuple[str, PatchOutcome]:
    if patch.is_applied and patch.is_applied(text):
        return text, PatchOutcome(patch.patch_id, PatchStatus.ALREADY_APPLIED)
    for candidate in patch.candidates:
        found = candidate(text)
        if not found:
            continue
        try:
            new_text = apply_edits(text, patch.render(text, found, value))
        except PatchError as e:
            LOG.warning("%s: %s", patch.patch_id, e)
            return text, PatchOutcome(patch.patch_id, PatchStatus.FAILED, str(e))
        return new_text, PatchOutcome(patch.patch_id, PatchStatus.APPLIED, candidate.__name__)
    LOG.warning("%s: pattern not found", patch.patch_id)
    return text, PatchOutcome(patch.patch_id, PatchStatus.NOT_FOUND)


def patch_or_raise(text: str, patch_id: str, value) -> str:
    """Apply a single patch, raising instead of reporting an outcome."""
    patch = PATCHES_BY_ID.get(patch_id)
    if patch is None:
        raise PatchError(f"unknown patch id: {patch_id}", patch_id)
    helpers.clear_caches()
    new_text, outcome = apply_patch(text, patch, value)
    if outcome.status is PatchStatus.ALREADY_APPLIED:
        raise AlreadyPatched(f"{patch_id} is already applied", patch_id)
    if outcome.status is PatchStatus.NOT_FOUND:
        raise PatternNotFound(f"{patch_id}: pattern not found", patch_id)
    if outcome.status is PatchStatus.FAILED:
        raise PatchError(f"{patch_id}: {outcome.detail}", patch_id)
    return new_text


def run_patches(text: str, settings: PatchSettings, only: Optional[Iterable[str]] = None) -> PatchRun:
    selected = set(only) if only else None
    if selected:
        unknown = selected - set(PATCHES_BY_ID)
        if unknown:
            raise PatchError(f"unknown patch id(s): {', '.join(sorted(unknown))}")
    helpers.clear_caches()
    run = PatchRun(text)
    for patch in PATCHES:
        if selected is not None and patch.patch_id not in selected:
            continue
        if not settings.enabled(patch.setting):
            run.outcomes.append(PatchOutcome(patch.patch_id, PatchStatus.SKIPPED, "not enabled"))
            continue
        value = getattr(settings, patch.setting)
        run.text, outcome = apply_patch(run.text, patch, value)
        LOG.info("%-28s %s", patch.patch_id, outcome.status.value)
        run.outcomes.append(outcome)
    return run
