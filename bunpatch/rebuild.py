"""Re-serialize a module graph after some module contents changed.

Pool layout, in module order: name, contents, sourcemap, bytecode, each
followed by a single NUL. Then the module table, the exec argv plus NUL, the
offsets header and the trailer. Strings are never shared between pointers.
"""
import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence

from .errors import UnknownModule
from .records import (
    TRAILER, ModuleRecord, OffsetsHeader, StringPointer,
    encode_module_record, encode_offsets, read_string_pointer,
)

LOG = logging.getLogger(__name__)


@dataclass
class ModuleContent:
    """A module with its strings resolved, ready to lay out."""
    record: ModuleRecord
    name: bytes
    contents: bytes
    sourcemap: bytes = b""
    bytecode: bytes = b""


@dataclass
class RebuildResult:
    payload: bytes
    offsets: OffsetsHeader
    modules: List[ModuleRecord]


class _Pool:
    def __init__(self):
        self.parts = []
        self.size = 0

    def add(self, data: bytes) -> StringPointer:
        ptr = StringPointer(self.size, len(data))
        self.parts.append(data)
        self.parts.append(b"\x00")
        self.size += len(data) + 1
        return ptr


def layout_payload(entries: Sequence[ModuleContent], exec_argv: bytes = b"",
                   entry_point_id: int = 0, flags: int = 0) -> RebuildResult:
    pool = _Pool()
    records = []
    for entry in entries:
        name = pool.add(entry.name)
        contents = pool.add(entry.contents)
        sourcemap = pool.add(entry.sourcemap)
        bytecode = pool.add(entry.bytecode)
        records.append(entry.record.with_pointers(name, contents, sourcemap, bytecode))

    table = b"".join(encode_module_record(r) for r in records)
    modules_ptr = StringPointer(pool.size, len(table))
    pool.parts.append(table)
    pool.size += len(table)

    argv_ptr = pool.add(exec_argv)

    offsets = OffsetsHeader(
        byte_count=pool.size,
        modules_ptr=modules_ptr,
        entry_point_id=entry_point_id,
        compile_exec_argv_ptr=argv_ptr,
        flags=flags,
    )
    payload = b"".join(pool.parts) + encode_offsets(offsets) + TRAILER
    return RebuildResult(payload, offsets, records)


def resolve_modules(modules: Sequence[ModuleRecord], payload: bytes,
                    replacements: Optional[Mapping[str, bytes]] = None) -> List[ModuleContent]:
    replacements = dict(replacements or {})
    entries = []
    for record in modules:
        name = read_string_pointer(payload, record.name)
        key = name.decode("utf-8", "replace")
        if key in replacements:
            contents = bytes(replacements.pop(key))
            LOG.debug("replacing %s (%d -> %d bytes)", key, record.contents.length, len(contents))
        else:
            contents = read_string_pointer(payload, record.contents)
        entries.append(ModuleContent(
            record=record,
            name=name,
            contents=contents,
            sourcemap=read_string_pointer(payload, record.sourcemap),
            bytecode=read_string_pointer(payload, record.bytecode),
        ))
    if replacements:
        raise UnknownModule(f"no module named {', '.join(sorted(replacements))}")
    return entries


def rebuild_payload(modules: Sequence[ModuleRecord], payload: bytes,
                    offsets: OffsetsHeader,
                    replacements: Optional[Mapping[str, bytes]] = None) -> RebuildResult:
    """Lay out a fresh payload, swapping in replacement module contents.

    With no replacements, a payload that was itself produced here comes back
    byte for byte.
    """
    entries = resolve_modules(modules, payload, replacements)
    exec_argv = read_string_pointer(payload, offsets.compile_exec_argv_ptr)
    result = layout_payload(entries, exec_argv, offsets.entry_point_id, offsets.flags)
    LOG.info("rebuilt payload: %d modules, %d -> %d bytes",
             len(result.modules), len(payload), len(result.payload))
    return result
