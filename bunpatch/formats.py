"""Executable format detection from leading magic bytes."""
import enum
import logging
import struct

from .errors import FormatUnrecognized

LOG = logging.getLogger(__name__)

MACHO_MAGICS = {
    b"\xfe\xed\xfa\xce",   # MH_MAGIC
    b"\xfe\xed\xfa\xcf",   # MH_MAGIC_64
    b"\xce\xfa\xed\xfe",   # MH_CIGAM
    b"\xcf\xfa\xed\xfe",   # MH_CIGAM_64
}
ELF_MAGIC = b"\x7fELF"
DOS_MAGIC = b"MZ"
PE_SIGNATURE = b"PE\x00\x00"
E_LFANEW_OFFSET = 0x3C
PREFIX_SIZE = 4096


class BinaryFormat(enum.Enum):
    MACHO = "macho"
    PE = "pe"
    ELF = "elf"

    @property
    def base_path_prefix(self) -> str:
        return "B:/~BUN/" if self is BinaryFormat.PE else "/$bunfs/"


def _pe_signature_offset(prefix: bytes):
    if len(prefix) < E_LFANEW_OFFSET + 4:
        return None
    return struct.unpack_from("<I", prefix, E_LFANEW_OFFSET)[0]


def classify_prefix(prefix: bytes) -> BinaryFormat:
    """Classify a file from its first bytes.

    For PE the prefix has to reach the "PE\\0\\0" signature at e_lfanew.
    """
    head = bytes(prefix[:4])
    if head in MACHO_MAGICS:
        return BinaryFormat.MACHO
    if head == ELF_MAGIC:
        return BinaryFormat.ELF
    if head[:2] == DOS_MAGIC:
        lfanew = _pe_signature_offset(prefix)
        if lfanew is not None and prefix[lfanew:lfanew + 4] == PE_SIGNATURE:
            return BinaryFormat.PE
        raise FormatUnrecognized("MZ header without a PE signature")
    raise FormatUnrecognized(f"unrecognized magic {head.hex() or '(empty)'}")


def detect_binary_format(path) -> BinaryFormat:
    with open(path, "rb") as fh:
        prefix = fh.read(PREFIX_SIZE)
        if prefix[:2] == DOS_MAGIC:
            lfanew = _pe_signature_offset(prefix)
            if lfanew is not None and lfanew + 4 > len(prefix):
                fh.seek(lfanew)
                sig = fh.read(4)
                prefix = prefix.ljust(lfanew, b"\x00")[:lfanew] + sig
    fmt = classify_prefix(prefix)
    LOG.debug("%s detected as %s", path, fmt.value)
    return fmt
