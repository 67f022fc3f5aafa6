"""Error taxonomy shared by the update services."""
from __future__ import annotations


class UpdaterError(RuntimeError):
    pass


class ProfileError(UpdaterError):
    """Local system inventory could not be read."""


class CatalogUnavailable(UpdaterError):
    """Vendor catalog returned a non-success status or an unparsable payload."""


class NoMatchFound(UpdaterError):
    """The profiled machine has no counterpart in the vendor catalog."""


class DownloadError(UpdaterError):
    pass


class ExtractionError(UpdaterError):
    pass


class InstallLaunchError(UpdaterError):
    pass


class CleanupError(UpdaterError):
    pass


class PipelineCancelled(UpdaterError):
    pass
