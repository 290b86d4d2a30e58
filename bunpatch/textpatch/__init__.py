"""Regex-driven patches for minified JavaScript bundles."""
from .location import LocationResult, apply_edits, apply_location
from .registry import PATCHES, PatchOutcome, PatchRun, PatchStatus, patch_or_raise, run_patches

__all__ = [
    "LocationResult", "apply_edits", "apply_location",
    "PATCHES", "PatchOutcome", "PatchRun", "PatchStatus", "patch_or_raise", "run_patches",
]
