"""Attachment resolution for questflow.

Maps attachment descriptors to bytes. Where the bytes come from depends on
the descriptor's state and on which persistence backend is active.
"""

import logging
from typing import TYPE_CHECKING, Callable

from questflow.errors import Unavailable
from questflow.types import Attachment, DraftAttachment, StoredAttachment

if TYPE_CHECKING:
    from questflow.storage.base import PersistenceBackend

logger = logging.getLogger(__name__)


def extension_for(media_type: str) -> str:
    """Filename suffix for a MIME type.

    ``image/jpeg`` maps to ``.jpg``; other ``image/<fmt>`` and ``audio/<fmt>``
    map to ``.<fmt>``; anything else gets no suffix. Existing media filenames
    were generated with this mapping, so it must not change.
    """
    if not media_type:
        return ""
    major, _, subtype = media_type.partition("/")
    if major == "image":
        return f".{'jpg' if subtype == 'jpeg' else subtype}"
    if major == "audio":
        return f".{subtype}"
    return ""


class AttachmentResolver:
    """Materializes attachment bytes through the active backend.

    Args:
        backend_fn: Returns the currently active backend. The backend can
            change when the user picks a new record directory.
    """

    def __init__(self, backend_fn: Callable[[], "PersistenceBackend"]):
        self._backend_fn = backend_fn

    def materialize(self, descriptor: Attachment) -> bytes:
        """Return the bytes behind a descriptor.

        Raises:
            Unavailable: If the bytes are not reachable in the current mode.
            NotFound: If the backend path no longer exists.
        """
        if isinstance(descriptor, DraftAttachment):
            return descriptor.data
        if isinstance(descriptor, StoredAttachment):
            backend = self._backend_fn()
            if not backend.supports_binary:
                raise Unavailable(
                    f"{descriptor.name or descriptor.path} is stored in a record directory "
                    f"that is not open"
                )
            return backend.read_attachment(descriptor.path)
        raise Unavailable(f"No bytes available for {descriptor.name or descriptor.media_type}")

    def is_available(self, descriptor: Attachment) -> bool:
        """Whether ``materialize`` can be expected to succeed (no I/O)."""
        if isinstance(descriptor, DraftAttachment):
            return True
        if isinstance(descriptor, StoredAttachment):
            return self._backend_fn().supports_binary
        return False
