"""Locate and decode the module graph payload embedded in a Bun executable.

Mach-O: __BUN segment / __bun section   (parsed with lief)
PE:     .bun section                     (parsed with pefile)
ELF:    appended to the file, found by arithmetic from EOF (pyelftools only
        validates that the prefix really is an ELF image)

The returned payload always includes the offsets header and trailer.
"""
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, NamedTuple, Optional, Tuple

import lief
import pefile
from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

from .errors import FormatMismatch, HeaderParseError, SectionNotFound, SizeMismatch
from .formats import BinaryFormat, detect_binary_format
from .records import (
    ELF_TOTAL, MAX_U32, OFFSETS_SIZE, SIZE_FIELD, TRAILER,
    TRAILER_SIZE, ModuleRecord, OffsetsHeader, decode_module_table,
    decode_offsets, read_string_pointer,
)

LOG = logging.getLogger(__name__)

MACHO_SEGMENT = "__BUN"
MACHO_SECTION = "__bun"
PE_SECTION = b".bun"
ELF_TAIL = ELF_TOTAL.size + TRAILER_SIZE + OFFSETS_SIZE   # 56


@dataclass(frozen=True)
class ContainerLocation:
    """Where the framed payload lives inside the file.

    For Mach-O and PE, offset/size describe the whole section (length prefix
    included). For ELF they describe the payload itself.
    """
    offset: int
    size: int
    name: str = ""


@dataclass
class Extraction:
    format: BinaryFormat
    payload: bytes
    offsets: OffsetsHeader
    modules: List[ModuleRecord]
    container: ContainerLocation
    base_path_prefix: str = ""
    warnings: List[str] = field(default_factory=list)

    def module_name(self, record: ModuleRecord) -> str:
        return read_string_pointer(self.payload, record.name).decode("utf-8", "replace")

    def module_contents(self, record: ModuleRecord) -> bytes:
        return read_string_pointer(self.payload, record.contents)

    @property
    def entry_module(self) -> ModuleRecord:
        return self.modules[self.offsets.entry_point_id]

    @property
    def exec_argv(self) -> bytes:
        return read_string_pointer(self.payload, self.offsets.compile_exec_argv_ptr)


class ModuleStrings(NamedTuple):
    name: bytes
    contents: bytes
    sourcemap: bytes
    bytecode: bytes


def read_module_strings(extraction: Extraction, record: ModuleRecord) -> ModuleStrings:
    payload = extraction.payload
    return ModuleStrings(*(read_string_pointer(payload, p) for p in
                           (record.name, record.contents, record.sourcemap, record.bytecode)))


def parse_payload(payload: bytes) -> Tuple[OffsetsHeader, List[ModuleRecord]]:
    """Validate trailer, header and module table of a complete payload."""
    if len(payload) < OFFSETS_SIZE + TRAILER_SIZE:
        raise HeaderParseError(f"payload of {len(payload)} bytes is too short")
    if payload[-TRAILER_SIZE:] != TRAILER:
        raise HeaderParseError("Bun trailer not found at end of payload")
    header_pos = len(payload) - TRAILER_SIZE - OFFSETS_SIZE
    offsets = decode_offsets(payload, header_pos)
    if offsets.byte_count != header_pos:
        raise SizeMismatch(
            f"header declares byte_count {offsets.byte_count}, header sits at {header_pos}")

    pool = payload[:header_pos]
    table = read_string_pointer(pool, offsets.modules_ptr)
    modules = decode_module_table(table)
    read_string_pointer(pool, offsets.compile_exec_argv_ptr)
    for idx, rec in enumerate(modules):
        for ptr in (rec.name, rec.contents, rec.sourcemap, rec.bytecode):
            if ptr.end > header_pos:
                raise HeaderParseError(
                    f"module {idx}: pointer {ptr.offset}+{ptr.length} exceeds byte_count {header_pos}")
    if not modules:
        raise HeaderParseError("module table is empty")
    if offsets.entry_point_id >= len(modules):
        raise HeaderParseError(
            f"entry point {offsets.entry_point_id} out of range for {len(modules)} modules")
    return offsets, modules


def _unframe(section: bytes, what: str) -> bytes:
    if len(section) < SIZE_FIELD.size:
        raise HeaderParseError(f"{what} is too small to hold a length prefix")
    (length,) = SIZE_FIELD.unpack_from(section, 0)
    available = len(section) - SIZE_FIELD.size
    if length > available:
        raise SizeMismatch(f"{what} declares {length} payload bytes, only {available} present")
    return bytes(section[SIZE_FIELD.size:SIZE_FIELD.size + length])


def macho_bun_section(path):
    binary = lief.parse(str(path))
    if binary is None or not isinstance(binary, lief.MachO.Binary):
        raise FormatMismatch(f"{path}: lief could not parse a Mach-O image")
    segment = binary.get_segment(MACHO_SEGMENT)
    if segment is None:
        raise SectionNotFound(f"{MACHO_SEGMENT} segment not found")
    for section in segment.sections:
        if section.name == MACHO_SECTION:
            return binary, segment, section
    raise SectionNotFound(f"{MACHO_SECTION} section not found in {MACHO_SEGMENT}")


def extract_macho(path, data: bytes) -> Tuple[bytes, ContainerLocation]:
    _, _, section = macho_bun_section(path)
    start, size = section.offset, section.size
    if start + size > len(data):
        raise SizeMismatch(f"__bun section {start}+{size} runs past end of file")
    location = ContainerLocation(start, size, f"{MACHO_SEGMENT},{MACHO_SECTION}")
    LOG.debug("__bun section at 0x%x, %d bytes", start, size)
    return _unframe(data[start:start + size], "__bun section"), location


def load_pe(data: bytes) -> pefile.PE:
    try:
        return pefile.PE(data=data, fast_load=True)
    except pefile.PEFormatError as e:
        raise FormatMismatch(f"pefile rejected image: {e}") from e


def find_pe_section(pe: pefile.PE):
    for section in pe.sections:
        if section.Name.rstrip(b"\x00") == PE_SECTION:
            return section
    raise SectionNotFound(".bun section not found")


def extract_pe(data: bytes) -> Tuple[bytes, ContainerLocation]:
    pe = load_pe(data)
    section = find_pe_section(pe)
    start, size = section.PointerToRawData, section.SizeOfRawData
    if start + size > len(data):
        raise SizeMismatch(f".bun section {start}+{size} runs past end of file")
    LOG.debug(".bun section at 0x%x, %d raw bytes", start, size)
    return _unframe(data[start:start + size], ".bun section"), ContainerLocation(start, size, ".bun")


def locate_elf_payload(data: bytes) -> Tuple[int, OffsetsHeader]:
    """Two-pass read of the ELF tail.

    The header sits just before the trailer, which sits just before the
    trailing u64. Once byte_count is known the payload start follows:
    size - (8 + 16 + 32) - byte_count.
    """
    size = len(data)
    if size < ELF_TAIL:
        raise HeaderParseError("file too small to carry a Bun payload")
    (total,) = ELF_TOTAL.unpack_from(data, size - ELF_TOTAL.size)
    trailer_pos = size - ELF_TOTAL.size - TRAILER_SIZE
    if data[trailer_pos:trailer_pos + TRAILER_SIZE] != TRAILER:
        raise HeaderParseError("Bun trailer not found before the ELF size field")
    offsets = decode_offsets(data, size - ELF_TAIL)
    if total > MAX_U32 or total <= offsets.byte_count:
        raise SizeMismatch(f"ELF total {total} inconsistent with byte_count {offsets.byte_count}")
    start = size - ELF_TAIL - offsets.byte_count
    if start < 0:
        raise SizeMismatch(f"byte_count {offsets.byte_count} larger than the file")
    return start, offsets


def check_elf_image(data: bytes) -> ELFFile:
    try:
        return ELFFile(io.BytesIO(data))
    except ELFError as e:
        raise FormatMismatch(f"pyelftools rejected image: {e}") from e


def extract_elf(data: bytes) -> Tuple[bytes, ContainerLocation]:
    elf = check_elf_image(data)
    start, offsets = locate_elf_payload(data)
    if start < elf["e_ehsize"]:
        raise SizeMismatch("payload would overlap the ELF header")
    end = len(data) - ELF_TOTAL.size
    LOG.debug("ELF payload at 0x%x, %d bytes (%s)", start, end - start, elf.get_machine_arch())
    return bytes(data[start:end]), ContainerLocation(start, end - start, "elf-tail")


def extract_payload(path, fmt: Optional[BinaryFormat] = None) -> Extraction:
    fmt = fmt or detect_binary_format(path)
    data = Path(path).read_bytes()
    if fmt is BinaryFormat.MACHO:
        payload, location = extract_macho(path, data)
    elif fmt is BinaryFormat.PE:
        payload, location = extract_pe(data)
    else:
        payload, location = extract_elf(data)
    offsets, modules = parse_payload(payload)
    LOG.info("%s: %s payload with %d modules (%d bytes)",
             path, fmt.value, len(modules), len(payload))
    return Extraction(fmt, payload, offsets, modules, location, fmt.base_path_prefix)


def module_matches(name: str, wanted: str) -> bool:
    """Exact name, or a suffix that starts at a path separator."""
    if name == wanted:
        return True
    tail = wanted.lstrip("/")
    return bool(tail) and name.endswith("/" + tail)


def find_module(extraction: Extraction, names: Iterable[str] = ()) -> ModuleRecord:
    """Pick a module by full name or path suffix, else the entry point.

    Names are tried in the given order. Modules with empty contents never match.
    """
    wanted = list(names)
    for n in wanted:
        for record in extraction.modules:
            if record.contents.length and module_matches(extraction.module_name(record), n):
                return record
    if wanted:
        LOG.warning("no module matching %s, using entry point", ", ".join(wanted))
    return extraction.entry_module
