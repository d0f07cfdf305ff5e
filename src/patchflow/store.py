"""Ownership of the current generation of patches."""

from collections.abc import Iterable, Iterator
from contextlib import ExitStack

from patchflow.core import Patch, RasterImage


class PatchStore:
    """Holds the patches of the currently loaded image.

    Patches are replaced as a whole. Every bitmap of the outgoing generation
    is closed before the incoming one is installed.
    """

    def __init__(self) -> None:
        self._patches: list[Patch] = []

    def replace(self, new_patches: Iterable[Patch]) -> None:
        """Release the current generation and install ``new_patches``.

        All bitmaps are released even if closing one of them raises; the
        error propagates once every release has been attempted, with the
        new generation already in place.
        """
        incoming = list(new_patches)
        outgoing, self._patches = self._patches, incoming
        with ExitStack() as stack:
            for patch in outgoing:
                for bitmap in patch.bitmaps():
                    stack.callback(bitmap.close)

    def clear(self) -> None:
        self.replace([])

    def set_enhanced(self, index: int, image: RasterImage) -> Patch:
        """Attach the enhanced bitmap of patch ``index`` (once only)."""
        if not 0 <= index < len(self._patches):
            raise IndexError(f"Unknown patch index {index} (store holds {len(self._patches)})")
        patch = self._patches[index]
        if patch.enhanced is not None:
            raise ValueError(f"Patch {index} at {patch.spec.top_left} is already enhanced")
        patch.enhanced = image
        return patch

    def patches(self) -> tuple[Patch, ...]:
        """Row-major, read-only view of the current generation."""
        return tuple(self._patches)

    @property
    def enhanced_count(self) -> int:
        return sum(1 for patch in self._patches if patch.is_enhanced)

    def allocated_bitmaps(self) -> int:
        """Number of open bitmaps owned by the current generation."""
        return sum(
            1 for patch in self._patches for bitmap in patch.bitmaps() if not bitmap.closed
        )

    def __len__(self) -> int:
        return len(self._patches)

    def __iter__(self) -> Iterator[Patch]:
        return iter(self.patches())

    def __getitem__(self, index: int) -> Patch:
        return self._patches[index]
