from dataclasses import dataclass
from datetime import datetime
from enum import Enum, auto
from typing import Optional


class FileType(Enum):
    FILE = auto()
    DIRECTORY = auto()
    SYMLINK = auto()
    UNKNOWN = auto()


@dataclass(frozen=True)
class Permissions:
    read: bool = False
    write: bool = False
    exec: bool = False

    def __str__(self) -> str:
        return "".join(
            flag if allowed else "-"
            for flag, allowed in zip("rwx", (self.read, self.write, self.exec))
        )


@dataclass
class FileDescriptor:
    name: str
    filetype: FileType
    size: int = 0
    modified_time: Optional[datetime] = None
    owner: Optional[str] = None
    group: Optional[str] = None
    user_permissions: Optional[Permissions] = None
    group_permissions: Optional[Permissions] = None
    other_permissions: Optional[Permissions] = None
    target: Optional[str] = None

    @property
    def is_directory(self) -> bool:
        return self.filetype == FileType.DIRECTORY

    @property
    def is_file(self) -> bool:
        return self.filetype == FileType.FILE

    @property
    def is_symlink(self) -> bool:
        return self.filetype == FileType.SYMLINK

    def __str__(self) -> str:
        if self.target is not None:
            return f"{self.filetype.name} {self.name} -> {self.target}"
        return f"{self.filetype.name} {self.name}"
