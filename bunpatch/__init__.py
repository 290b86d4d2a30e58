"""Unpack, patch and repack the module graph of Bun standalone executables."""
from .errors import BunPatchError
from .extract import Extraction, extract_payload, find_module, read_module_strings
from .formats import BinaryFormat, detect_binary_format
from .rebuild import rebuild_payload
from .repack import CapacityPolicy, RepackResult, repack_binary

__version__ = "0.3.0"

__all__ = [
    "BunPatchError", "BinaryFormat", "CapacityPolicy", "Extraction", "RepackResult",
    "detect_binary_format", "extract_payload", "find_module", "read_module_strings", "rebuild_payload",
    "repack_binary",
]
