"""Regex locators for patch targets in a minified CLI bundle.

Every locator is a pure function of the text. It returns a LocationResult
(or a list of them for targets that occur several times) and None when the
target is absent. Locators never raise for a missing target.
"""
import logging
import re
from typing import List, NamedTuple, Optional

from .location import LocationResult

LOG = logging.getLogger(__name__)

ID = r"[$\w]+"


def _span(m, group=0, base=0, identifiers=(), variant="") -> LocationResult:
    return LocationResult(base + m.start(group), base + m.end(group), tuple(identifiers), variant)


# ------------------------------------------------------------------ themes

THEME_SWITCH_RE = re.compile(r"""switch\s*\(([^)]+)\)\s*\{[^}]*case\s*["']light["'][^}]+\}""", re.S)
THEME_OPTIONS_RE = re.compile(r'\[(?:\{label:"(?:Dark|Light).+?",value:".+?"\},?)+\]')
THEME_NAMES_RE = re.compile(r'return\{(?:[\w$]+?:"(?:Dark|Light).+?",?)+\}')


class ThemeLocations(NamedTuple):
    switch: LocationResult
    options: LocationResult
    names: LocationResult


def locate_themes(text: str) -> Optional[ThemeLocations]:
    """The color switch, the picker options array and the id -> name map."""
    switch = THEME_SWITCH_RE.search(text)
    options = THEME_OPTIONS_RE.search(text)
    names = THEME_NAMES_RE.search(text)
    if not (switch and options and names):
        LOG.debug("themes: switch=%s options=%s names=%s", bool(switch), bool(options), bool(names))
        return None
    return ThemeLocations(
        _span(switch, identifiers=(switch.group(1).strip(),)),
        _span(options),
        _span(names),
    )


# ------------------------------------------------------------------ verbs

PRESENT_VERBS_RE = re.compile(r"""\[("[A-Z][a-z'é\-\\xA-F0-9]+in[g']",?){50,}\]""")
PAST_VERBS_RE = re.compile(r"""\[("[A-Z][a-z'é\-\\xA-F0-9]+ed",?){5,}\]""")


def locate_thinking_verbs(text: str) -> Optional[List[LocationResult]]:
    present = PRESENT_VERBS_RE.search(text)
    past = PAST_VERBS_RE.search(text)
    if not present or not past:
        return None
    return [_span(present, variant="present"), _span(past, variant="past")]


# ------------------------------------------------------------------ spinner

FORMAT_AREA_RE = re.compile(r"spinnerTip:" + ID + r",(?:" + ID + r":" + ID + r",)*overrideMessage:"
                            + ID + r",.{300}")
FORMAT_WINDOW = 10000
FORMAT_NEW_RE = re.compile(r",(" + ID + r")(=(\(" + ID + r"&&!" + ID + r"\.isIdle\?" + ID
                           + r"\.spinnerVerb\?\?" + ID + r":" + ID + r"\))\+\"(?:…|\\u2026)\")")
FORMAT_OLD_RE = re.compile(r",(" + ID + r")(=\(([^;]{1,200}?)\)\+\"(?:…|\\u2026)\")")


def _locate_format(text: str, pattern) -> Optional[LocationResult]:
    area = FORMAT_AREA_RE.search(text)
    if not area:
        return None
    base = area.start()
    m = pattern.search(text[base:base + FORMAT_WINDOW])
    if not m:
        return None
    return _span(m, group=2, base=base, identifiers=(m.group(3),))


def locate_thinker_format(text: str) -> Optional[LocationResult]:
    """`=(expr)+"…"` assignment of the spinner line; identifiers[0] is expr."""
    return _locate_format(text, FORMAT_NEW_RE)


def locate_thinker_format_legacy(text: str) -> Optional[LocationResult]:
    return _locate_format(text, FORMAT_OLD_RE)


SYMBOL_ARRAY_RE = re.compile(r'\["[·✢*✳✶✻✽]",\s*(?:"[·✢*✳✶✻✽]",?\s*)+\]')


def locate_thinker_symbols(text: str) -> List[LocationResult]:
    return [_span(m) for m in SYMBOL_ARRAY_RE.finditer(text)]


SPEED_RE = re.compile(r"(if\(!" + ID + r"\)\{" + ID + r"\(4\);return\})(.{0,200})120\)")
SPEED_LEGACY_RE = re.compile(r"[\w$]+\(\(\)=>\{if\(![\w$]+\)\{[\w$]+\(\d+\);return\}[\w$]+\(\([^)]+\)=>[^)]+\+1\)\},(\d+)\)")


def locate_thinker_speed(text: str) -> Optional[LocationResult]:
    """Whole `if(!x){f(4);return}...120)` run; identifiers[0] is the kept middle."""
    m = SPEED_RE.search(text)
    if not m:
        return None
    return LocationResult(m.start(), m.end() - 1, (m.group(2),))


def locate_thinker_speed_legacy(text: str) -> Optional[LocationResult]:
    m = SPEED_LEGACY_RE.search(text)
    if not m:
        return None
    return _span(m, group=1, identifiers=("",))


# ------------------------------------------------------------------ token count

TOKENS_RE = re.compile(r'(overrideMessage:.{0,10000},(' + ID + r')=' + ID + r'\()(.+?)'
                       r'(\),.{0,1000}key:"tokens".{0,200},\2," tokens")')
TOKENS_LEGACY_RE = re.compile(r'(overrideMessage:.{0,10000},key:"tokens".{0,200}' + ID
                              + r'\()(Math\.round\(.+?\))(\))')


def locate_token_count(text: str) -> Optional[LocationResult]:
    """identifiers = (text before, expression to round, text after)."""
    m = TOKENS_RE.search(text)
    if not m:
        return None
    return _span(m, identifiers=(m.group(1), m.group(3), m.group(4)))


def locate_token_count_legacy(text: str) -> Optional[LocationResult]:
    m = TOKENS_LEGACY_RE.search(text)
    if not m:
        return None
    return _span(m, identifiers=m.groups())


# ------------------------------------------------------------------ plan mode

READY_ANCHOR = 'title:"Ready to code?"'
READY_WINDOW = 3000
ON_CHANGE_RE = re.compile(r"onChange:\(" + ID + r"\)=>(" + ID + r")\(" + ID + r"\),onCancel")
PLAN_APPLIED_RE = re.compile(ID + r'\("yes-accept-edits"\);return null;return')
PLAN_RETURN_RE = re.compile(r'(\}\}\)\)\)\);)(return ' + ID + r'\.default\.createElement\(' + ID
                            + r'\.default\.Fragment,null,' + ID + r'\.default\.createElement\('
                            + ID + r',\{color:"planMode",title:"Ready to code\?")')


def plan_mode_auto_accepted(text: str) -> bool:
    return PLAN_APPLIED_RE.search(text) is not None


def locate_plan_mode_prompt(text: str) -> Optional[LocationResult]:
    """Insertion point before the "Ready to code?" render; identifiers[0] is the accept handler."""
    anchor = text.find(READY_ANCHOR)
    if anchor == -1:
        return None
    on_change = ON_CHANGE_RE.search(text, anchor, anchor + READY_WINDOW)
    if not on_change:
        return None
    m = PLAN_RETURN_RE.search(text)
    if not m:
        return None
    at = m.end(1)
    return LocationResult(at, at, (on_change.group(1),))


# ------------------------------------------------------------------ swarm gate

SWARM_MARKER = "tengu_brass_pebble"
SWARM_GATE_RE = re.compile(r"function (" + ID + r")\(\)\{if\(" + ID
                           + r"\(process\.env\.CLAUDE_CODE_AGENT_SWARMS\)\)[^}]*?\"tengu_brass_pebble\"[^}]*\}")

SWARM_DISABLED = "disabled"
SWARM_ENABLED = "enabled"
SWARM_UNKNOWN = "unknown"


def locate_swarm_gate(text: str) -> Optional[LocationResult]:
    m = SWARM_GATE_RE.search(text)
    if not m:
        return None
    return _span(m, identifiers=(m.group(1),))


def detect_swarm_mode_state(text: str) -> str:
    if locate_swarm_gate(text):
        return SWARM_DISABLED
    if SWARM_MARKER not in text and "TeammateTool" in text:
        return SWARM_ENABLED
    return SWARM_UNKNOWN


# ------------------------------------------------------------------ context limit

CONTEXT_ENV_CHECK = ("if(process.env.CLAUDE_CODE_CONTEXT_LIMIT)"
                     "return Number(process.env.CLAUDE_CODE_CONTEXT_LIMIT);")
CONTEXT_RE = re.compile(r"function (" + ID + r")\(([$\w,]*)\)\{if\([^}]+return 1e6;return (" + ID
                        + r")\}var \3=200000")
CONTEXT_LEGACY_RE = re.compile(
    r"function (" + ID + r")\(([$\w]*)\)\{((?:if\(" + ID + r"\.includes\(\"\[2m\]\"\)\)return 2000000;)?"
    r"(?:if\(" + ID + r"\.includes\(\"\[1m\]\"\)\)return 1e6;)?return 200000)\}")


def _body_start(m, fn_name) -> LocationResult:
    at = m.start() + m.group(0).index("{") + 1
    return LocationResult(at, at, (fn_name,))


def locate_context_limit(text: str) -> Optional[LocationResult]:
    m = CONTEXT_RE.search(text)
    return _body_start(m, m.group(1)) if m else None


def locate_context_limit_legacy(text: str) -> Optional[LocationResult]:
    m = CONTEXT_LEGACY_RE.search(text)
    return _body_start(m, m.group(1)) if m else None


# ------------------------------------------------------------------ thinking blocks

THINKING_HIDDEN_RE = re.compile(r"if\(!\([A-Za-z]+\|\|[A-Za-z]+\)\)return[^;]+Thinking[^;]+;")
THINKING_CASE_RE = re.compile(r'(case"thinking":)if\(.+?\)return null;(.+?isTranscriptMode:).+?([},])')


def locate_thinking_visibility(text: str) -> Optional[LocationResult]:
    """Early return that collapses thinking blocks; removed outright."""
    m = THINKING_HIDDEN_RE.search(text)
    return _span(m, variant="remove") if m else None


def locate_thinking_visibility_legacy(text: str) -> Optional[LocationResult]:
    m = THINKING_CASE_RE.search(text)
    return _span(m, identifiers=m.groups(), variant="transcript") if m else None


THINKING_LABEL_ANCHOR = "∴ Thinking…"
THINKING_LABEL_WINDOW = 200
CREATE_ELEMENT_RE = re.compile(r"(" + ID + r"(?:\.default)?)\.createElement\((" + ID + r"),null,(" + ID + r")\)")


def locate_thinking_label(text: str) -> Optional[LocationResult]:
    """identifiers = (react expr, component, label variable)."""
    anchor = text.find(THINKING_LABEL_ANCHOR)
    if anchor == -1:
        return None
    m = CREATE_ELEMENT_RE.search(text, anchor, anchor + THINKING_LABEL_WINDOW)
    return _span(m, identifiers=m.groups()) if m else None


# ------------------------------------------------------------------ misc

RATE_LIMIT_RE = re.compile(r"agentDefinitions:" + ID + r",onOpenRateLimitOptions:(" + ID + r")")


def locate_rate_limit_callbacks(text: str) -> List[LocationResult]:
    return [_span(m, group=1) for m in RATE_LIMIT_RE.finditer(text)]


NEW_SESSION_SHORTCUT_RE = re.compile(r'"Cmd\+K"|"Ctrl\+K"|"meta\+k"')


def locate_new_session_shortcut(text: str) -> Optional[LocationResult]:
    m = NEW_SESSION_SHORTCUT_RE.search(text)
    return _span(m) if m else None


SUDO_REFUSAL_RE = re.compile(
    r'console\.error\("--dangerously-skip-permissions cannot be used with root\/sudo '
    r'privileges for security reasons"\),process\.exit\(1\)')


def locate_sudo_refusal(text: str) -> Optional[LocationResult]:
    m = SUDO_REFUSAL_RE.search(text)
    return _span(m) if m else None


# ------------------------------------------------------------------ MCP startup

MCP_NONBLOCKING_RE = re.compile(r"!" + ID + r"\(process\.env\.MCP_CONNECTION_NONBLOCKING\)")
MCP_BATCH_SIZE_RE = re.compile(r'MCP_SERVER_CONNECTION_BATCH_SIZE\|\|"",10\)\|\|(\d+)')


def locate_mcp_nonblocking_check(text: str) -> Optional[LocationResult]:
    m = MCP_NONBLOCKING_RE.search(text)
    return _span(m) if m else None


def mcp_nonblocking_forced(text: str) -> bool:
    return "MCP_SERVER_CONNECTION_BATCH_SIZE" in text and MCP_NONBLOCKING_RE.search(text) is None


def locate_mcp_batch_size(text: str) -> Optional[LocationResult]:
    """The default `||3` after the batch size env lookup."""
    m = MCP_BATCH_SIZE_RE.search(text)
    return _span(m, group=1) if m else None


# ------------------------------------------------------------------ subagent models

AGENT_WINDOW = r"[\s\S]{1,2500}?"
PLAN_AGENT_RE = re.compile(r'agentType\s*:\s*"Plan"\s*,' + AGENT_WINDOW + r'\bmodel\s*:\s*"([^"]+)"')
EXPLORE_AGENT_RE = re.compile(r'\{agentType\s*:\s*"Explore"\s*,' + AGENT_WINDOW + r'\bmodel\s*:\s*"([^"]+)"')
GENERAL_AGENT_RE = re.compile(r'[^$\w]' + ID + r'\s*=\s*\{agentType\s*:\s*"general-purpose"[\s\S]{0,2500}?\}')
MODEL_FIELD_RE = re.compile(r'\bmodel\s*:\s*"([^"]+)"')


class SubagentLocations(NamedTuple):
    plan: Optional[LocationResult]
    explore: Optional[LocationResult]
    general_purpose: Optional[LocationResult]


def _locate_general_purpose(text: str) -> Optional[LocationResult]:
    m = GENERAL_AGENT_RE.search(text)
    if not m:
        return None
    brace = m.end() - 1
    field = MODEL_FIELD_RE.search(text, m.start(), brace)
    if field:
        return _span(field, group=1, variant="replace")
    separator = "" if text[m.start():brace].rstrip().endswith(",") else ","
    return LocationResult(brace, brace, (separator,), "insert")


def locate_subagent_models(text: str) -> Optional[SubagentLocations]:
    """Model strings of the built-in agents.

    general-purpose may have no model field; its location is then an
    insertion point before the closing brace (variant "insert").
    """
    plan = PLAN_AGENT_RE.search(text)
    explore = EXPLORE_AGENT_RE.search(text)
    found = SubagentLocations(
        _span(plan, group=1, variant="replace") if plan else None,
        _span(explore, group=1, variant="replace") if explore else None,
        _locate_general_purpose(text),
    )
    if not any(found):
        return None
    return found
