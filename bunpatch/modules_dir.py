"""On-disk module directory used by `bunpatch unpack` / `bunpatch repack`.

Logical names lose their base prefix ("/$bunfs/" or "B:/~BUN/") and a
following "root/". The entry point module is renamed to carry its loader as
extension, e.g. "/$bunfs/root/claude" -> "claude.js". A manifest.json next to
the files records the mapping back to full names.
"""
import json
import logging
import os
import posixpath
from pathlib import Path
from typing import Dict, List

from .errors import BunPatchError
from .extract import Extraction
from .records import ENCODINGS, LOADERS, enum_name

LOG = logging.getLogger(__name__)

BASE_PUBLIC_PATH_SUFFIX = "root/"
MANIFEST = "manifest.json"


def module_output_name(name: str, base_prefix: str, loader: int = 1, is_entry: bool = False) -> str:
    out = name[len(base_prefix):] if base_prefix and name.startswith(base_prefix) else name
    if out.startswith(BASE_PUBLIC_PATH_SUFFIX):
        out = out[len(BASE_PUBLIC_PATH_SUFFIX):]
    if is_entry:
        stem, _ = posixpath.splitext(out)
        out = f"{stem}.{enum_name(LOADERS, loader)}"
    return out


def _safe_join(directory: Path, relative: str) -> Path:
    target = (directory / relative).resolve()
    root = directory.resolve()
    if target != root and root not in target.parents:
        raise BunPatchError(f"module path {relative!r} escapes {directory}")
    return target


def _output_names(extraction: Extraction) -> List[str]:
    entry = extraction.offsets.entry_point_id
    return [
        module_output_name(extraction.module_name(rec), extraction.base_path_prefix,
                           rec.loader, idx == entry)
        for idx, rec in enumerate(extraction.modules)
    ]


def unpack_modules(extraction: Extraction, directory) -> List[Path]:
    """Write each non-empty module to directory; return the written paths."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    written, manifest = [], []
    for idx, (rec, rel) in enumerate(zip(extraction.modules, _output_names(extraction))):
        contents = extraction.module_contents(rec)
        manifest.append({
            "index": idx,
            "name": extraction.module_name(rec),
            "file": rel,
            "loader": rec.loader_name,
            "encoding": enum_name(ENCODINGS, rec.encoding),
            "contents_size": len(contents),
            "is_entry_point": idx == extraction.offsets.entry_point_id,
        })
        if not contents:
            LOG.info("contents of %s are empty, skipped", rel)
            continue
        target = _safe_join(directory, rel)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(contents)
        LOG.debug("wrote %s (%d bytes)", target, len(contents))
        written.append(target)

    with open(directory / MANIFEST, "w") as mf:
        json.dump({
            "format": extraction.format.value,
            "entry_point_id": extraction.offsets.entry_point_id,
            "flags": extraction.offsets.flags,
            "modules": manifest,
        }, mf, indent=2)
    return written


def load_replacements(extraction: Extraction, directory) -> Dict[str, bytes]:
    """Read back module files whose contents differ from the embedded ones."""
    directory = Path(directory)
    replacements = {}
    for rec, rel in zip(extraction.modules, _output_names(extraction)):
        path = _safe_join(directory, rel)
        if not path.is_file():
            continue
        data = path.read_bytes()
        if data != extraction.module_contents(rec):
            name = extraction.module_name(rec)
            replacements[name] = data
            LOG.info("modified module %s (%s)", name, os.path.relpath(path, directory))
    return replacements
