"""Exceptions raised by PatchFlow."""


class PatchFlowError(Exception):
    """Base class for PatchFlow errors."""


class PartitionPrecondition(PatchFlowError, ValueError):
    """Axis length or patch size is not strictly positive."""


class LoadError(PatchFlowError):
    """A source image or model could not be opened or decoded."""


class ResolveError(PatchFlowError):
    """A patch could not be upscaled by the collaborator."""

    def __init__(self, message: str, patch_index: int | None = None):
        super().__init__(message)
        self.patch_index = patch_index
