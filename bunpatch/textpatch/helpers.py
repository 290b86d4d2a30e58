"""Find minified identifiers that several patches need.

Names change on every release, so each finder keys on a literal that
survives minification and reads the identifier next to it.
"""
import functools
import logging
import re
from collections import Counter
from typing import Optional

LOG = logging.getLogger(__name__)

ID = r"[$\w]+"

CHALK_RE = re.compile(
    r"\b(" + ID + r")(?:\.(?:cyan|gray|green|red|yellow|ansi256|bgAnsi256|bgHex|bgRgb|hex|rgb|"
    r"bold|dim|inverse|italic|strikethrough|underline)\b)+\(")
NATIVE_LOADER_RE = re.compile(r"[,;](" + ID + r")=\(" + ID + r"," + ID + r"," + ID + r"\)=>\{"
                              + ID + r"=" + ID + r"!=null\?")
NPM_LOADER_RE = re.compile(r"var (" + ID + r")=\(" + ID + r"," + ID + r"," + ID + r"\)=>\{")
REACT_MODULE_RE = re.compile(r"var (" + ID + r")=" + ID + r"\(\(" + ID + r"\)=>\{var " + ID
                             + r'=Symbol\.for\("react\.(?:transitional\.)?element"\)')
CREATE_REQUIRE_RE = re.compile(r'import\{createRequire as (' + ID + r')\}from"node:module";')
TEXT_COMPONENT_RE = re.compile(
    r"\bfunction (" + ID + r").{0,20}color:" + ID + r",backgroundColor:" + ID + r",dimColor:"
    + ID + r"(?:=![01])?,bold:" + ID + r"(?:=![01])?")
BOX_INK_RE = re.compile(r"function (" + ID + r")\(.{0,2000}\b(" + ID + r")=" + ID
                        + r'(?:\.default)?\.createElement\("ink-box".{0,200}?return \2')
BOX_DIRECT_RE = re.compile(r"function (" + ID + r")\(\{children:" + ID + r",flexWrap:" + ID
                           + r'.{0,2000}?\.createElement\("ink-box"')
BOX_DISPLAY_NAME_RE = re.compile(r'\b(' + ID + r')\.displayName="Box"')


def find_chalk_var(text: str) -> Optional[str]:
    """The identifier most often used with chalk style methods."""
    counts = Counter(m.group(1) for m in CHALK_RE.finditer(text))
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def get_module_loader_function(text: str) -> Optional[str]:
    m = NATIVE_LOADER_RE.search(text[:2000])
    if m:
        return m.group(1)
    m = NPM_LOADER_RE.search(text[:1000])
    if m:
        return m.group(1)
    LOG.debug("module loader function not found")
    return None


def get_react_module_name_non_bun(text: str) -> Optional[str]:
    m = REACT_MODULE_RE.search(text)
    return m.group(1) if m else None


def get_react_module_function_bun(text: str) -> Optional[str]:
    # var fH=N((a,b)=>{b.exports=n7L()})  where n7L is the non-Bun module name
    module_name = get_react_module_name_non_bun(text)
    if not module_name:
        return None
    m = re.search(r"var (" + ID + r")=" + ID + r"\(\(" + ID + r"," + ID + r"\)=>\{" + ID
                  + r"\.exports=" + re.escape(module_name) + r"\(\)", text)
    return m.group(1) if m else None


@functools.lru_cache(maxsize=4)
def get_react_var(text: str) -> Optional[str]:
    loader = get_module_loader_function(text)
    module_name = get_react_module_name_non_bun(text)
    if not loader or not module_name:
        LOG.debug("react var: loader=%s module=%s", loader, module_name)
        return None
    m = re.search(r"\b(" + ID + r")=" + re.escape(loader) + r"\(" + re.escape(module_name)
                  + r"\(\),1\)", text)
    if m:
        return m.group(1)
    bun_fn = get_react_module_function_bun(text)
    if not bun_fn:
        return None
    m = re.search(r"\b(" + ID + r")=" + re.escape(loader) + r"\(" + re.escape(bun_fn)
                  + r"\(\),1\)", text)
    if not m:
        LOG.debug("react var not found (loader=%s, module=%s, bun=%s)", loader, module_name, bun_fn)
        return None
    return m.group(1)


def find_require_func(text: str) -> Optional[str]:
    """Variable bound to createRequire(import.meta.url) in esbuild bundles."""
    m = CREATE_REQUIRE_RE.search(text)
    if not m:
        return None
    m = re.search(r"var (" + ID + r")=" + re.escape(m.group(1)) + r"\(import\.meta\.url\)", text)
    return m.group(1) if m else None


@functools.lru_cache(maxsize=4)
def get_require_func_name(text: str) -> str:
    # Bun bundles call require directly
    return find_require_func(text) or "require"


def find_text_component(text: str) -> Optional[str]:
    m = TEXT_COMPONENT_RE.search(text)
    return m.group(1) if m else None


def find_box_component(text: str) -> Optional[str]:
    for pattern in (BOX_INK_RE, BOX_DIRECT_RE, BOX_DISPLAY_NAME_RE):
        m = pattern.search(text)
        if m:
            return m.group(1)
    LOG.debug("Box component not found")
    return None


def clear_caches():
    get_react_var.cache_clear()
    get_require_func_name.cache_clear()
