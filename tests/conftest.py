import struct

import pytest

from bunpatch.rebuild import ModuleContent, layout_payload
from bunpatch.records import ELF_TOTAL, OFFSETS_SIZE, TRAILER_SIZE, ModuleRecord, StringPointer

EMPTY = StringPointer()


def record(loader=1, encoding=2, module_format=1, side=0):
    return ModuleRecord(EMPTY, EMPTY, EMPTY, EMPTY, encoding, loader, module_format, side)


def make_payload(modules, entry_point_id=0, exec_argv=b"", flags=0):
    """modules: iterable of (name, contents) or (name, contents, loader)."""
    entries = []
    for mod in modules:
        name, contents = mod[0], mod[1]
        loader = mod[2] if len(mod) > 2 else 1
        entries.append(ModuleContent(record(loader=loader), name.encode(), contents))
    return layout_payload(entries, exec_argv, entry_point_id, flags)


def elf_header():
    ident = b"\x7fELF" + bytes([2, 1, 1, 0]) + b"\x00" * 8
    return struct.pack("<16sHHIQQQIHHHHHH", ident, 2, 0x3E, 1, 0, 0, 0, 0, 64, 56, 0, 64, 0, 0)


def make_elf(payload, image_size=256):
    image = elf_header().ljust(image_size, b"\xcc")
    return image + payload + ELF_TOTAL.pack(len(payload) + TRAILER_SIZE + OFFSETS_SIZE)


def _align(value, alignment):
    return (value + alignment - 1) // alignment * alignment


def make_pe(sections, file_align=0x200, sect_align=0x1000, overlay=b""):
    """sections: list of (name, virtual_address, data). Raw data is laid out in list order."""
    headers_size = 0x200
    dos = bytearray(0x40)
    dos[0:2] = b"MZ"
    struct.pack_into("<I", dos, 0x3C, 0x40)
    coff = struct.pack("<HHIIIHH", 0x8664, len(sections), 0, 0, 0, 240, 0x22)

    table = b""
    raw = b""
    cursor = headers_size
    image_end = sect_align
    for name, va, data in sections:
        raw_size = _align(len(data), file_align)
        table += struct.pack("<8s6I2HI", name, len(data), va, raw_size, cursor, 0, 0, 0, 0, 0x40000040)
        raw += data.ljust(raw_size, b"\x00")
        cursor += raw_size
        image_end = max(image_end, va + _align(len(data), sect_align))

    optional = struct.pack(
        "<HBB5IQ2I6H4I2H4Q2I",
        0x20B, 14, 0, 0, 0, 0, 0x1000, 0x1000,
        0x140000000, sect_align, file_align,
        6, 0, 0, 0, 6, 0,
        0, image_end, headers_size, 0,
        3, 0x8160,
        0x100000, 0x1000, 0x100000, 0x1000,
        0, 16,
    ) + b"\x00" * 128
    head = bytes(dos) + b"PE\x00\x00" + coff + optional + table
    return head.ljust(headers_size, b"\x00") + raw + overlay


@pytest.fixture
def two_module_payload():
    return make_payload([("/$bunfs/root/a.js", b"A" * 10), ("/$bunfs/root/entry", b"E" * 20)],
                        entry_point_id=1, exec_argv=b"--smol")


def make_macho(section_content, section_size=0x1000, header_size=0x1000):
    """Minimal x86_64 MH_EXECUTE with one __BUN segment holding one __bun section."""
    sect = struct.pack("<16s16sQQIIIIIIII", b"__bun", b"__BUN", 0x100001000, section_size,
                       header_size, 0, 0, 0, 0, 0, 0, 0)
    seg = struct.pack("<II16sQQQQiiII", 0x19, 72 + len(sect), b"__BUN", 0x100001000,
                      _align(section_size, 0x1000), header_size, section_size, 1, 1, 1, 0) + sect
    head = struct.pack("<IiiIIIII", 0xFEEDFACF, 0x01000007, 3, 2, 1, len(seg), 0, 0) + seg
    return head.ljust(header_size, b"\x00") + section_content.ljust(section_size, b"\x00")
