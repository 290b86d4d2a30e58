"""Exception types raised by bunpatch.

Binary layer errors abort the one output being produced. Text layer errors
(PatchError and subclasses) are caught by the patch driver and turned into a
per-patch outcome so the remaining patches still run.
"""


class BunPatchError(Exception):
    """Base class for every error raised on purpose by this package."""


class FormatUnrecognized(BunPatchError):
    """File does not start with a Mach-O, PE or ELF signature."""


UnknownFormat = FormatUnrecognized


class FormatMismatch(BunPatchError):
    """Magic bytes matched a format but the container parser rejected it."""


class SectionNotFound(BunPatchError):
    """The __BUN/__bun segment or the .bun section is missing."""


class HeaderParseError(BunPatchError):
    """Offsets header, trailer or a string pointer is out of range."""


class SizeMismatch(BunPatchError):
    """Declared payload size disagrees with the bytes actually present."""


class CapacityExceeded(BunPatchError):
    """New payload does not fit in the container and growth is not allowed."""

    def __init__(self, message, needed=None, available=None):
        super().__init__(message)
        self.needed = needed
        self.available = available


class UnknownModule(BunPatchError):
    """A replacement names a module that is not in the module table."""


class OutputBusy(BunPatchError):
    """Output executable is in use (ETXTBSY, EBUSY or EPERM on rename)."""


class SettingsError(BunPatchError, ValueError):
    """Settings JSON has the wrong shape."""


class PatchError(BunPatchError):
    """A text patch could not be applied."""

    def __init__(self, message, patch_id=None):
        super().__init__(message)
        self.patch_id = patch_id


class PatternNotFound(PatchError):
    pass


class AlreadyPatched(PatchError):
    pass
