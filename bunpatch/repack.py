"""Write a rebuilt payload back into its container.

Mach-O  overwrite the __bun section in place, or grow __BUN with lief
PE      resize .bun with pefile and lay the sections out again
ELF     replace the appended tail

Every output goes through a temp file that is renamed over the target.
"""
import contextlib
import enum
import errno
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

import pefile

from .errors import BunPatchError, CapacityExceeded, OutputBusy
from .extract import (
    Extraction, macho_bun_section, find_pe_section, load_pe, locate_elf_payload,
)
from .formats import BinaryFormat
from .rebuild import rebuild_payload
from .records import ELF_TOTAL, OFFSETS_SIZE, SIZE_FIELD, TRAILER_SIZE

LOG = logging.getLogger(__name__)

MACHO_PAGE = 0x1000   # segment growth is rounded up to a page
BUSY_ERRNOS = {errno.ETXTBSY, errno.EBUSY, errno.EPERM}


class CapacityPolicy(enum.Enum):
    FAIL = "fail"
    TRUNCATE = "truncate"
    EXTEND = "extend"


@dataclass
class RepackResult:
    output_path: str
    format: BinaryFormat
    size: int
    payload_size: int
    warnings: List[str] = field(default_factory=list)


def align(value: int, alignment: int) -> int:
    if alignment <= 1:
        return value
    return (value + alignment - 1) // alignment * alignment


def frame_section_content(payload: bytes) -> bytes:
    return SIZE_FIELD.pack(len(payload)) + payload


@contextlib.contextmanager
def atomic_output(output_path):
    """Yield a temp path next to output_path; rename it over the target on success."""
    output_path = str(output_path)
    tmp = output_path + ".tmp"
    parent = os.path.dirname(output_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    try:
        yield tmp
        if not os.path.exists(tmp):
            raise BunPatchError(f"nothing was written to {tmp}")
        os.chmod(tmp, 0o755)
        os.replace(tmp, output_path)
    except OSError as e:
        _discard(tmp)
        if e.errno in BUSY_ERRNOS:
            raise OutputBusy(f"{output_path} is busy or locked: {e}") from e
        raise
    except BaseException:
        _discard(tmp)
        raise


def _discard(path):
    with contextlib.suppress(FileNotFoundError):
        os.unlink(path)


def write_output(output_path, data: bytes) -> int:
    with atomic_output(output_path) as tmp:
        with open(tmp, "wb") as fh:
            fh.write(data)
        written = os.path.getsize(tmp)
        if written != len(data):
            raise BunPatchError(f"short write to {tmp}: {written} of {len(data)} bytes")
    return len(data)


# ---------------------------------------------------------------- Mach-O

def overwrite_section(data: bytes, offset: int, size: int, content: bytes,
                      policy: CapacityPolicy = CapacityPolicy.FAIL,
                      warnings: Optional[List[str]] = None) -> bytes:
    """Copy of data with [offset, offset+size) replaced by zero-padded content."""
    if len(content) > size:
        if policy is not CapacityPolicy.TRUNCATE:
            raise CapacityExceeded(
                f"payload needs {len(content)} bytes, section holds {size}",
                needed=len(content), available=size)
        msg = (f"section content truncated from {len(content)} to {size} bytes; "
               "the binary will not load the rebuilt module graph")
        LOG.warning(msg)
        if warnings is not None:
            warnings.append(msg)
        content = content[:size]
    out = bytearray(data)
    out[offset:offset + size] = content.ljust(size, b"\x00")
    return bytes(out)


def _resign_macho(path, warnings: List[str]):
    codesign = shutil.which("codesign")
    if not codesign:
        warnings.append("codesign not available; re-sign the output before running it on macOS")
        return
    proc = subprocess.run([codesign, "-s", "-", "-f", str(path)],
                          stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
    if proc.returncode != 0:
        msg = f"ad-hoc codesign failed: {proc.stderr.strip() or proc.returncode}"
        LOG.warning(msg)
        warnings.append(msg)
    else:
        LOG.info("re-signed %s (ad-hoc)", path)


def _extend_macho(bin_path, content: bytes, tmp: str, warnings: List[str]):
    binary, segment, section = macho_bun_section(bin_path)
    if binary.has_code_signature:
        binary.remove_signature()
    grow = align(len(content) - section.size, MACHO_PAGE)
    LOG.info("extending %s by %d bytes", segment.name, grow)
    if not binary.extend_segment(segment, grow):
        raise CapacityExceeded(f"lief could not extend {segment.name} by {grow} bytes",
                               needed=len(content), available=section.size)
    section.size = len(content)
    section.content = list(content)
    binary.write(tmp)
    warnings.append("Mach-O segment extended; code signature was removed")


def repack_macho(bin_path, extraction: Extraction, payload: bytes, output_path,
                 policy: CapacityPolicy = CapacityPolicy.FAIL) -> RepackResult:
    content = frame_section_content(payload)
    location = extraction.container
    warnings = []
    with atomic_output(output_path) as tmp:
        if len(content) > location.size and policy is CapacityPolicy.EXTEND:
            _extend_macho(bin_path, content, tmp, warnings)
        else:
            data = Path(bin_path).read_bytes()
            out = overwrite_section(data, location.offset, location.size, content, policy, warnings)
            with open(tmp, "wb") as fh:
                fh.write(out)
        _resign_macho(tmp, warnings)
    size = os.path.getsize(output_path)
    return RepackResult(str(output_path), BinaryFormat.MACHO, size, len(payload), warnings)


# ---------------------------------------------------------------- PE

def _virtual_size(section) -> int:
    return section.Misc_VirtualSize or section.SizeOfRawData


def rebuild_pe(data: bytes, payload: bytes, warnings: Optional[List[str]] = None) -> bytes:
    pe = load_pe(data)
    bun = find_pe_section(pe)
    oh = pe.OPTIONAL_HEADER
    file_align = oh.FileAlignment or 0x200
    sect_align = oh.SectionAlignment or 0x1000
    content = frame_section_content(payload)

    later = [s.VirtualAddress for s in pe.sections if s.VirtualAddress > bun.VirtualAddress]
    if later:
        limit = min(later) - bun.VirtualAddress
        if align(len(content), sect_align) > limit:
            raise CapacityExceeded(
                f".bun would grow into the next section ({len(content)} > {limit} bytes)",
                needed=len(content), available=limit)

    bodies = {}
    for section in pe.sections:
        if section is bun:
            bodies[id(section)] = content
        elif section.SizeOfRawData:
            start = section.PointerToRawData
            bodies[id(section)] = data[start:start + section.SizeOfRawData]

    security = pe.OPTIONAL_HEADER.DATA_DIRECTORY[
        pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_SECURITY"]]
    overlay_start = pe.get_overlay_data_start_offset()
    overlay = b""
    if overlay_start is not None and not security.VirtualAddress:
        overlay = data[overlay_start:]
    if security.VirtualAddress:
        if warnings is not None:
            warnings.append("Authenticode signature removed")
        security.VirtualAddress = 0
        security.Size = 0

    bun.Misc_VirtualSize = len(content)
    bun.SizeOfRawData = align(len(content), file_align)

    with_raw = sorted((s for s in pe.sections if id(s) in bodies),
                      key=lambda s: s.PointerToRawData)
    cursor = min((s.PointerToRawData for s in with_raw if s.PointerToRawData),
                 default=align(oh.SizeOfHeaders, file_align))
    cursor = max(cursor, align(oh.SizeOfHeaders, file_align))
    for section in with_raw:
        section.PointerToRawData = cursor
        cursor += section.SizeOfRawData

    oh.SizeOfImage = align(oh.SizeOfHeaders, sect_align) + sum(
        align(_virtual_size(s), sect_align) for s in pe.sections)

    out = bytearray(pe.write()[:oh.SizeOfHeaders])
    for section in with_raw:
        out.extend(b"\x00" * (section.PointerToRawData - len(out)))
        out.extend(bodies[id(section)].ljust(section.SizeOfRawData, b"\x00")[:section.SizeOfRawData])
    out.extend(overlay)

    fresh = load_pe(bytes(out))
    fresh.OPTIONAL_HEADER.CheckSum = fresh.generate_checksum()
    return bytes(fresh.write())


def repack_pe(bin_path, payload: bytes, output_path) -> RepackResult:
    warnings = []
    out = rebuild_pe(Path(bin_path).read_bytes(), payload, warnings)
    size = write_output(output_path, out)
    return RepackResult(str(output_path), BinaryFormat.PE, size, len(payload), warnings)


# ---------------------------------------------------------------- ELF

def rebuild_elf(data: bytes, payload: bytes) -> bytes:
    """Swap the appended tail; payload already ends with header + trailer."""
    start, _ = locate_elf_payload(data)
    total = len(payload) + TRAILER_SIZE + OFFSETS_SIZE
    return bytes(data[:start]) + payload + ELF_TOTAL.pack(total)


def repack_elf(bin_path, payload: bytes, output_path) -> RepackResult:
    out = rebuild_elf(Path(bin_path).read_bytes(), payload)
    size = write_output(output_path, out)
    return RepackResult(str(output_path), BinaryFormat.ELF, size, len(payload))


# ---------------------------------------------------------------- dispatch

def repack_binary(bin_path, extraction: Extraction, replacements: Mapping[str, bytes],
                  output_path, policy: CapacityPolicy = CapacityPolicy.FAIL) -> RepackResult:
    rebuilt = rebuild_payload(extraction.modules, extraction.payload,
                              extraction.offsets, replacements)
    fmt = extraction.format
    if fmt is BinaryFormat.MACHO:
        result = repack_macho(bin_path, extraction, rebuilt.payload, output_path, policy)
    elif fmt is BinaryFormat.PE:
        result = repack_pe(bin_path, rebuilt.payload, output_path)
    else:
        result = repack_elf(bin_path, rebuilt.payload, output_path)
    LOG.info("wrote %s (%d bytes, payload %d bytes)", result.output_path, result.size, result.payload_size)
    return result
