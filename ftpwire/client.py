"""Async FTP client moving files between the local disk and a server."""

from pathlib import Path, PurePath
from types import TracebackType
from typing import Callable, List, Optional
from typing_extensions import Self

import aiofiles

from ftpwire.config.remotes import FtpConfig
from ftpwire.exceptions import (
    ClientError,
    ListingError,
    ProtocolError,
    TransferError,
)
from ftpwire.filedescriptor import FileDescriptor
from ftpwire.session import FtpSession

CHUNK_SIZE = 8192


class AsyncFtpClient:
    """Async FTP client with progress callbacks and cancellation support.

    Progress callbacks receive the number of bytes moved so far and return
    False to cancel the transfer.
    """

    def __init__(self, session: FtpSession, name: str = "") -> None:
        """
        Initialize the client.

        Args:
            session: The (not yet connected) session to run commands on
            name: Human-readable name for this client
        """
        self.session = session
        self._name = name if name else session.host

    @classmethod
    def from_config(cls, config: FtpConfig) -> Self:
        return cls(FtpSession.from_config(config), name=config.name)

    def name(self) -> str:
        """Return the client name."""
        return self._name

    async def __aenter__(self) -> Self:
        await self.session.connect()
        await self.session.auth()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        await self.session.quit()

    async def ls(self, path: PurePath) -> List[FileDescriptor]:
        """List directory contents."""
        try:
            return await self.session.ls(path.as_posix())
        except ClientError as e:
            raise ListingError(f"Failed to list directory '{path}': {e}") from e

    async def get(
        self,
        remote: PurePath,
        local: Path,
        progress_callback: Optional[Callable[[int], bool]] = None,
    ) -> None:
        """Download a file with progress tracking."""
        bytes_downloaded = 0
        cancelled = False

        try:
            async with self.session.transfer("RETR", remote.as_posix()) as channel:
                async with aiofiles.open(local, "wb") as local_file:
                    async for chunk in channel:
                        await local_file.write(chunk)
                        bytes_downloaded += len(chunk)
                        if progress_callback and not progress_callback(bytes_downloaded):
                            # User cancelled
                            cancelled = True
                            break
        except ProtocolError as e:
            # Closing the data connection early may be answered with 426
            if not cancelled:
                raise TransferError(f"Download of '{remote}' failed: {e}") from e
        except ClientError as e:
            raise TransferError(f"Download of '{remote}' failed: {e}") from e

    async def put(
        self,
        local: Path,
        remote: PurePath,
        progress_callback: Optional[Callable[[int], bool]] = None,
    ) -> None:
        """Upload a file with progress tracking."""
        bytes_uploaded = 0

        try:
            async with self.session.transfer("STOR", remote.as_posix()) as channel:
                async with aiofiles.open(local, "rb") as local_file:
                    while True:
                        chunk = await local_file.read(CHUNK_SIZE)
                        if not chunk:
                            break
                        await channel.write(chunk)
                        bytes_uploaded += len(chunk)
                        if progress_callback and not progress_callback(bytes_uploaded):
                            raise TransferError("Transfer cancelled by user.")
        except TransferError:
            raise
        except ClientError as e:
            raise TransferError(f"Upload of '{remote}' failed: {e}") from e

    async def unlink(self, remote: PurePath) -> bool:
        """Delete a file."""
        try:
            await self.session.raw("DELE", remote.as_posix())
            return True
        except ProtocolError:
            return False

    async def mkdir(self, remote: PurePath) -> bool:
        """Create a directory."""
        try:
            await self.session.raw("MKD", remote.as_posix())
            return True
        except ProtocolError:
            return False
