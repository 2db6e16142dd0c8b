"""
Where transcoder inputs come from and outputs go to.

The pipeline and the directory operations only ever talk to a
:py:class:`Storage`: they hand it opaque input references and get back opaque
output handles.  :py:class:`FileSystemStorage` is the implementation used by the
management commands.
"""

import logging
import tempfile
import uuid
from pathlib import Path
from typing import IO, Any, Protocol

from .conf import get_setting

logger = logging.getLogger(__name__)


class Storage(Protocol):
    """The stream boundary of the transcoder."""

    def open_for_read(self, ref: Any) -> IO[bytes]:
        """
        Open the input unit named by ``ref`` as a readable binary stream.

        Raises:
            OSError: the unit cannot be opened

        """
        ...

    def create_for_write(self, suffix: str) -> tuple[IO[bytes], Any]:
        """
        Create a new output unit.

        Returns:
            A writable binary stream, and the handle by which callers will know
            the output once the stream has been closed.

        Raises:
            OSError: the unit cannot be created

        """
        ...


class FileSystemStorage:
    """
    :py:class:`Storage` on top of a directory.

    Input refs are paths, absolute or relative to :py:attr:`root`; output
    handles are the :py:class:`pathlib.Path` of the created file.

    Args:
        root: the directory to create outputs in.  Defaults to the
            ``LDAPION_STORAGE_DIR`` setting, or to a fresh temporary directory.

    """

    def __init__(self, root: str | Path | None = None) -> None:
        if root is None:
            root = get_setting("STORAGE_DIR")
        if root is None:
            root = tempfile.mkdtemp(prefix="ldapion-")
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path(self, ref: str | Path) -> Path:
        path = Path(ref)
        if not path.is_absolute():
            path = self.root / path
        return path

    def open_for_read(self, ref: str | Path) -> IO[bytes]:
        return self.path(ref).open("rb")

    def create_for_write(self, suffix: str) -> tuple[IO[bytes], Path]:
        path = self.root / f"{uuid.uuid4().hex}{suffix}"
        stream = path.open("xb")
        logger.debug("ldapion.storage.created path=%s", path)
        return stream, path
