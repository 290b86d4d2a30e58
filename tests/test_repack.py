import os
import struct

import pefile
import pytest

from bunpatch.errors import CapacityExceeded
from bunpatch.extract import extract_payload, extract_pe
from bunpatch.formats import BinaryFormat
from bunpatch.repack import (
    CapacityPolicy, align, atomic_output, frame_section_content, overwrite_section,
    rebuild_elf, rebuild_pe, repack_binary,
)

from conftest import make_elf, make_macho, make_payload, make_pe


def test_frame_section_content():
    assert frame_section_content(b"abc") == b"\x03\x00\x00\x00abc"


def test_align():
    assert align(0, 0x200) == 0
    assert align(1, 0x200) == 0x200
    assert align(0x200, 0x200) == 0x200
    assert align(5, 1) == 5


def test_overwrite_section_pads_with_zeros():
    data = b"HEAD" + b"\xaa" * 8 + b"TAIL"
    out = overwrite_section(data, 4, 8, b"xyz")
    assert out == b"HEAD" + b"xyz" + b"\x00" * 5 + b"TAIL"


def test_overwrite_section_fails_when_too_large():
    with pytest.raises(CapacityExceeded) as exc:
        overwrite_section(b"\x00" * 16, 4, 4, b"12345")
    assert exc.value.needed == 5
    assert exc.value.available == 4


def test_overwrite_section_truncate_warns():
    warnings = []
    out = overwrite_section(b"\x00" * 12, 4, 4, b"123456", CapacityPolicy.TRUNCATE, warnings)
    assert out[4:8] == b"1234"
    assert len(out) == 12
    assert warnings and "truncated" in warnings[0]


def test_elf_repack_round_trip(tmp_path, two_module_payload):
    src = tmp_path / "app"
    src.write_bytes(make_elf(two_module_payload.payload, image_size=512))
    ex = extract_payload(src)

    out = tmp_path / "out" / "app"
    result = repack_binary(src, ex, {"/$bunfs/root/entry": b"console.log('patched')"}, out)
    assert result.output_path == str(out)
    assert os.stat(out).st_mode & 0o777 == 0o755
    assert not os.path.exists(str(out) + ".tmp")

    again = extract_payload(out)
    assert again.module_contents(again.entry_module) == b"console.log('patched')"
    assert again.module_contents(again.modules[0]) == b"A" * 10
    assert out.read_bytes()[:512] == src.read_bytes()[:512]
    # trailer appears exactly once
    assert out.read_bytes().count(b"\n---- Bun! ----\n") == 1


def test_elf_repack_without_changes_is_identical(two_module_payload):
    data = make_elf(two_module_payload.payload)
    assert rebuild_elf(data, two_module_payload.payload) == data


def test_pe_repack_grows_last_section(two_module_payload):
    text = bytes(range(256)) * 2
    data = make_pe([(b".text", 0x1000, text),
                    (b".bun", 0x2000, frame_section_content(two_module_payload.payload))])
    bigger = make_payload([("B:/~BUN/root/a.js", b"A" * 10), ("B:/~BUN/root/entry", b"E" * 9000)],
                          entry_point_id=1).payload

    out = rebuild_pe(data, bigger)
    payload, location = extract_pe(out)
    assert payload == bigger

    pe = pefile.PE(data=out, fast_load=True)
    text_sec, bun_sec = pe.sections
    assert text_sec.get_data()[:len(text)] == text
    assert bun_sec.Misc_VirtualSize == len(bigger) + 4
    assert bun_sec.SizeOfRawData % pe.OPTIONAL_HEADER.FileAlignment == 0
    assert pe.OPTIONAL_HEADER.SizeOfImage == 0x2000 + align(len(bigger) + 4, 0x1000)
    assert pe.OPTIONAL_HEADER.CheckSum == pe.generate_checksum()


def test_pe_repack_refuses_to_overlap_next_section(two_module_payload):
    data = make_pe([(b".bun", 0x1000, frame_section_content(two_module_payload.payload)),
                    (b".text", 0x2000, b"\xc3" * 16)])
    huge = make_payload([("B:/~BUN/root/entry", b"E" * 0x2000)]).payload
    with pytest.raises(CapacityExceeded):
        rebuild_pe(data, huge)


def test_pe_keeps_overlay(two_module_payload):
    data = make_pe([(b".bun", 0x1000, frame_section_content(two_module_payload.payload))],
                   overlay=b"OVERLAY!")
    out = rebuild_pe(data, two_module_payload.payload)
    assert out.endswith(b"OVERLAY!")


def test_pe_file_round_trip(tmp_path, two_module_payload):
    src = tmp_path / "app.exe"
    src.write_bytes(make_pe([(b".text", 0x1000, b"\x90" * 32),
                             (b".bun", 0x2000, frame_section_content(two_module_payload.payload))]))
    ex = extract_payload(src)
    out = tmp_path / "patched.exe"
    repack_binary(src, ex, {"/$bunfs/root/entry": b"x" * 5000}, out)
    again = extract_payload(out)
    assert again.module_contents(again.entry_module) == b"x" * 5000


def test_atomic_output_removes_temp_on_error(tmp_path):
    target = tmp_path / "out.bin"
    with pytest.raises(RuntimeError):
        with atomic_output(target) as tmp:
            with open(tmp, "wb") as fh:
                fh.write(b"partial")
            raise RuntimeError("boom")
    assert not target.exists()
    assert not os.path.exists(str(target) + ".tmp")


def test_atomic_output_replaces_existing(tmp_path):
    target = tmp_path / "out.bin"
    target.write_bytes(b"old")
    with atomic_output(target) as tmp:
        with open(tmp, "wb") as fh:
            fh.write(b"new")
    assert target.read_bytes() == b"new"


@pytest.fixture
def no_codesign(monkeypatch):
    monkeypatch.setattr("bunpatch.repack.shutil.which", lambda name: None)


def _macho(tmp_path, payload):
    src = tmp_path / "app"
    src.write_bytes(make_macho(frame_section_content(payload)))
    return src


def test_macho_repack_in_place(tmp_path, two_module_payload, no_codesign):
    src = _macho(tmp_path, two_module_payload.payload)
    ex = extract_payload(src)
    assert ex.format is BinaryFormat.MACHO
    assert ex.container.size == 0x1000

    out = tmp_path / "app.patched"
    result = repack_binary(src, ex, {"/$bunfs/root/entry": b"short"}, out)
    assert result.size == os.path.getsize(src)
    assert any("codesign not available" in w for w in result.warnings)

    again = extract_payload(out)
    assert again.module_contents(again.entry_module) == b"short"
    assert out.read_bytes()[:0x1000] == src.read_bytes()[:0x1000]


def test_macho_repack_fails_when_section_too_small(tmp_path, two_module_payload, no_codesign):
    src = _macho(tmp_path, two_module_payload.payload)
    ex = extract_payload(src)
    out = tmp_path / "app.patched"
    with pytest.raises(CapacityExceeded) as exc:
        repack_binary(src, ex, {"/$bunfs/root/entry": b"E" * 0x2000}, out)
    assert exc.value.available == 0x1000
    assert not out.exists()
    assert not os.path.exists(str(out) + ".tmp")


def test_macho_repack_truncate_warns(tmp_path, two_module_payload, no_codesign):
    src = _macho(tmp_path, two_module_payload.payload)
    ex = extract_payload(src)
    out = tmp_path / "app.patched"
    result = repack_binary(src, ex, {"/$bunfs/root/entry": b"E" * 0x2000}, out,
                           CapacityPolicy.TRUNCATE)
    assert result.size == os.path.getsize(src)
    assert any("truncated" in w for w in result.warnings)


def test_macho_repack_extends_segment(tmp_path, two_module_payload, no_codesign):
    src = _macho(tmp_path, two_module_payload.payload)
    ex = extract_payload(src)
    out = tmp_path / "app.patched"
    result = repack_binary(src, ex, {"/$bunfs/root/entry": b"E" * 0x2000}, out,
                           CapacityPolicy.EXTEND)
    assert any("segment extended" in w for w in result.warnings)
    assert any("codesign not available" in w for w in result.warnings)
    assert os.stat(out).st_mode & 0o777 == 0o755

    again = extract_payload(out)
    assert again.container.size >= len(again.payload) + 4
    assert again.module_contents(again.entry_module) == b"E" * 0x2000
    assert again.module_contents(again.modules[0]) == b"A" * 10
