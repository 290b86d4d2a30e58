"""Fixed-width records of the Bun standalone module graph.

All integers are little endian. Layouts:

  Offsets header (32 bytes)
    Q   byte_count               offset of this header inside the payload
    II  modules_ptr              module table (offset, length)
    I   entry_point_id           index into the module table
    II  compile_exec_argv_ptr    exec argv string (offset, length)
    I   flags

  Module record (36 bytes)
    II  name / II contents / II sourcemap / II bytecode
    B   encoding / B loader / B module_format / B side

A StringPointer length never counts the NUL byte that follows the string in
the pool; readers slice by length.
"""
import struct
from dataclasses import dataclass, replace
from typing import List

from .errors import HeaderParseError

TRAILER = b"\n---- Bun! ----\n"
TRAILER_SIZE = len(TRAILER)              # 16

OFFSETS_STRUCT = struct.Struct("<QIIIIII")
OFFSETS_SIZE = OFFSETS_STRUCT.size       # 32

MODULE_STRUCT = struct.Struct("<IIIIIIIIBBBB")
MODULE_SIZE = MODULE_STRUCT.size         # 36

SIZE_FIELD = struct.Struct("<I")         # section length prefix (Mach-O, PE)
ELF_TOTAL = struct.Struct("<Q")          # trailing u64 of ELF executables

MAX_U32 = 0xFFFFFFFF

ENCODINGS = {0: "binary", 1: "latin1", 2: "utf8"}
LOADERS = {
    0: "jsx", 1: "js", 2: "ts", 3: "tsx", 4: "css", 5: "file", 6: "json",
    7: "jsonc", 8: "toml", 9: "wasm", 10: "napi", 11: "base64",
    12: "dataurl", 13: "text", 14: "bunsh", 15: "sqlite",
    16: "sqlite_embedded", 17: "html", 18: "yaml",
}
MODULE_FORMATS = {0: "none", 1: "esm", 2: "cjs"}
SIDES = {0: "server", 1: "client"}


def enum_name(table, value: int) -> str:
    return table.get(value, f"unknown({value})")


@dataclass(frozen=True)
class StringPointer:
    offset: int = 0
    length: int = 0

    @property
    def end(self) -> int:
        return self.offset + self.length


@dataclass(frozen=True)
class OffsetsHeader:
    byte_count: int
    modules_ptr: StringPointer
    entry_point_id: int
    compile_exec_argv_ptr: StringPointer
    flags: int = 0

    @property
    def module_count(self) -> int:
        return self.modules_ptr.length // MODULE_SIZE


@dataclass(frozen=True)
class ModuleRecord:
    name: StringPointer
    contents: StringPointer
    sourcemap: StringPointer
    bytecode: StringPointer
    encoding: int = 0
    loader: int = 0
    module_format: int = 0
    side: int = 0

    @property
    def loader_name(self) -> str:
        return enum_name(LOADERS, self.loader)

    @property
    def encoding_name(self) -> str:
        return enum_name(ENCODINGS, self.encoding)

    def with_pointers(self, name, contents, sourcemap, bytecode) -> "ModuleRecord":
        return replace(self, name=name, contents=contents,
                       sourcemap=sourcemap, bytecode=bytecode)


def decode_offsets(buf: bytes, pos: int = 0) -> OffsetsHeader:
    if pos < 0 or pos + OFFSETS_SIZE > len(buf):
        raise HeaderParseError(
            f"offsets header at {pos} needs {OFFSETS_SIZE} bytes, buffer has {len(buf)}")
    (byte_count, mod_off, mod_len, entry_id,
     argv_off, argv_len, flags) = OFFSETS_STRUCT.unpack_from(buf, pos)
    return OffsetsHeader(
        byte_count=byte_count,
        modules_ptr=StringPointer(mod_off, mod_len),
        entry_point_id=entry_id,
        compile_exec_argv_ptr=StringPointer(argv_off, argv_len),
        flags=flags,
    )


def encode_offsets(header: OffsetsHeader) -> bytes:
    return OFFSETS_STRUCT.pack(
        header.byte_count,
        header.modules_ptr.offset, header.modules_ptr.length,
        header.entry_point_id,
        header.compile_exec_argv_ptr.offset, header.compile_exec_argv_ptr.length,
        header.flags,
    )


def decode_module_record(buf: bytes, pos: int = 0) -> ModuleRecord:
    if pos < 0 or pos + MODULE_SIZE > len(buf):
        raise HeaderParseError(f"module record at {pos} runs past end of buffer")
    v = MODULE_STRUCT.unpack_from(buf, pos)
    return ModuleRecord(
        name=StringPointer(v[0], v[1]),
        contents=StringPointer(v[2], v[3]),
        sourcemap=StringPointer(v[4], v[5]),
        bytecode=StringPointer(v[6], v[7]),
        encoding=v[8], loader=v[9], module_format=v[10], side=v[11],
    )


def encode_module_record(record: ModuleRecord) -> bytes:
    return MODULE_STRUCT.pack(
        record.name.offset, record.name.length,
        record.contents.offset, record.contents.length,
        record.sourcemap.offset, record.sourcemap.length,
        record.bytecode.offset, record.bytecode.length,
        record.encoding, record.loader, record.module_format, record.side,
    )


def decode_module_table(table: bytes) -> List[ModuleRecord]:
    if len(table) % MODULE_SIZE:
        raise HeaderParseError(
            f"module table length {len(table)} is not a multiple of {MODULE_SIZE}")
    return [decode_module_record(table, i) for i in range(0, len(table), MODULE_SIZE)]


def read_string_pointer(payload: bytes, pointer: StringPointer) -> bytes:
    """Slice the bytes a pointer refers to, trusting the stored length."""
    if pointer.offset > len(payload) or pointer.end > len(payload):
        raise HeaderParseError(
            f"string pointer {pointer.offset}+{pointer.length} exceeds payload of {len(payload)} bytes")
    return bytes(payload[pointer.offset:pointer.end])
