from __future__ import annotations


class OffloadError(RuntimeError):
    pass


class StructuralPathError(OffloadError):
    """Artifact path is not `<root>/<source_id>/<file>`; skipped, never retried from the same occurrence."""


class ArtifactNotReadyError(OffloadError):
    """File is empty or still growing. Transient: the next event or scan retries it."""


class UploadError(OffloadError):
    """Remote write failed or could not be verified. The local file is left in place."""


class ConfigError(OffloadError, ValueError):
    pass


class StorageSetupError(OffloadError):
    pass


class WatchSetupError(OffloadError):
    pass


class JfrCommandError(OffloadError):
    pass
