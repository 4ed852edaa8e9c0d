"""Parsing of LIST/STAT directory listings into :class:`FileDescriptor` objects.

Two listing grammars are understood, selected by the first character of the
line:

* Unix ``ls -l`` style, e.g.
  ``-rw-r--r--   1 root     other     531 Jan 29 03:26 README``
* MS-DOS style, e.g. ``04-27-00  09:09PM       <DIR>          licensed``

Anything else (headers, footers, "total 12" lines) is not an entry.

Unix permission characters:

* ``r``/``w``/``x`` - the permission is granted
* ``-`` - the permission is not granted
* ``s``/``t`` - set-id or sticky bit on, execution on
* ``S``/``T`` - set-id or sticky bit on, execution off
* ``L`` - mandatory locking, execution off
"""

import re
from datetime import datetime
from typing import Iterable, List, Optional, Union

from ftpwire.filedescriptor import FileDescriptor, FileType, Permissions

UNIX_TYPE_CHARS = frozenset("bcdlps-")
SYMLINK_ARROW = " -> "

MONTHS = {
    name: number
    for number, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun",
         "jul", "aug", "sep", "oct", "nov", "dec"),
        start=1,
    )
}

RE_UNIX_ENTRY = re.compile(
    r"^([bcdlps-])"
    r"((?:[r-][w-][xsStTL-]){3})\+?\s+"
    r"(\d+)\s+"
    r"(\S+)\s+"
    r"(?:(\S+)\s+)?"
    r"(\d+)\s+"
    r"([A-Za-z]{3})\s+(\d{1,2})\s+"
    r"(\d{1,2}:\d{2}|\d{4})\s+"
    r"(.+)$"
)

RE_DOS_ENTRY = re.compile(
    r"^(\d{1,2})-(\d{1,2})-(\d{2,4})\s+"
    r"(\d{1,2}):(\d{2})\s*([AaPp][Mm])?\s+"
    r"(?:(<DIR>)\s+)?"
    r"(?:(\d+)\s+)?"
    r"(\S.*)$"
)

RE_RESPONSE_LINE = re.compile(r"^\d{3}(?:[ -]|$)")
RE_NEWLINE = re.compile(r"\r?\n")


def _file_type(char: str) -> FileType:
    if char == "d":
        return FileType.DIRECTORY
    if char == "l":
        return FileType.SYMLINK
    if char in "bcf-":
        return FileType.FILE
    return FileType.UNKNOWN


def _permissions(triplet: str) -> Permissions:
    execute = triplet[2]
    return Permissions(
        read=triplet[0] != "-",
        write=triplet[1] != "-",
        exec=execute != "-" and not execute.isupper(),
    )


def _recent_date(month: int, day: int, hour: int, minute: int, now: datetime) -> datetime:
    """Resolve a year-less ``Mon DD HH:MM`` date to the closest matching instant."""
    candidates = []
    # Feb 29 needs a leap year, which may be up to four years back
    for year in range(now.year - 4, now.year + 2):
        try:
            candidates.append(datetime(year, month, day, hour, minute))
        except ValueError:
            continue
    return min(candidates, key=lambda date: abs(date - now))


def _unix_date(month_name: str, day: str, time_or_year: str, now: datetime) -> Optional[datetime]:
    month = MONTHS.get(month_name.lower())
    if month is None:
        return None
    try:
        if ":" in time_or_year:
            hour, minute = (int(part) for part in time_or_year.split(":"))
            return _recent_date(month, int(day), hour, minute, now)
        return datetime(int(time_or_year), month, int(day))
    except ValueError:
        return None


def _parse_unix(line: str, now: datetime) -> Optional[FileDescriptor]:
    match = RE_UNIX_ENTRY.match(line)
    if match is None:
        return None

    (type_char, perms, _links, owner, group, size,
     month, day, time_or_year, name) = match.groups()

    target = None
    filetype = _file_type(type_char)
    arrow = name.find(SYMLINK_ARROW)
    if arrow > -1:
        target = name[arrow + len(SYMLINK_ARROW):]
        name = name[:arrow]

    return FileDescriptor(
        name=name,
        filetype=filetype,
        size=int(size),
        modified_time=_unix_date(month, day, time_or_year, now),
        owner=owner,
        group=group,
        user_permissions=_permissions(perms[0:3]),
        group_permissions=_permissions(perms[3:6]),
        other_permissions=_permissions(perms[6:9]),
        target=target,
    )


def _parse_dos(line: str) -> Optional[FileDescriptor]:
    match = RE_DOS_ENTRY.match(line)
    if match is None:
        return None

    month, day, year, hour, minute, meridiem, dir_marker, size, name = match.groups()
    if name in (".", ".."):
        return None

    hour_24 = int(hour)
    if meridiem is not None:
        hour_24 %= 12
        if meridiem.upper() == "PM":
            hour_24 += 12

    year_number = int(year)
    if len(year) == 2:
        # Same pivot as strptime's %y
        year_number += 2000 if year_number < 69 else 1900

    try:
        modified_time: Optional[datetime] = datetime(
            year_number, int(month), int(day), hour_24, int(minute)
        )
    except ValueError:
        modified_time = None

    if dir_marker is not None:
        return FileDescriptor(
            name=name, filetype=FileType.DIRECTORY, size=0, modified_time=modified_time
        )
    return FileDescriptor(
        name=name,
        filetype=FileType.FILE,
        size=int(size) if size is not None else 0,
        modified_time=modified_time,
    )


def _has_entry_shape(line: str) -> bool:
    return line[0] in UNIX_TYPE_CHARS or line[0].isdigit()


def _matches_grammar(line: str) -> bool:
    return bool(RE_UNIX_ENTRY.match(line) or RE_DOS_ENTRY.match(line))


def parse_line(line: str, *, now: Optional[datetime] = None) -> Optional[FileDescriptor]:
    """Parse a single listing line.

    Returns None for lines that are not file entries, including the ``.``
    and ``..`` entries of DOS listings.
    """
    if not line:
        return None

    first = line[0]
    if first in UNIX_TYPE_CHARS:
        return _parse_unix(line, now or datetime.now())
    if first.isdigit():
        return _parse_dos(line)
    return None


def parse_listing(
    listing: Union[str, Iterable[str]], *, now: Optional[datetime] = None
) -> List[FileDescriptor]:
    """Parse a whole listing, skipping non-entry lines.

    Some servers break file names containing newlines across several lines.
    A line that looks like the head of an entry but does not parse is first
    retried together with the line that follows it. Otherwise a line that
    does not parse is glued to the name of the previous entry.
    """
    if now is None:
        now = datetime.now()
    lines = RE_NEWLINE.split(listing) if isinstance(listing, str) else list(listing)

    entries: List[FileDescriptor] = []
    last_raw: Optional[str] = None
    index = 0
    while index < len(lines):
        line = lines[index]
        index += 1
        if not line.strip() or RE_RESPONSE_LINE.match(line):
            continue

        candidate = line.lstrip() if line[0].isspace() else line
        entry = parse_line(candidate, now=now)
        if entry is not None:
            entries.append(entry)
            last_raw = candidate
            continue

        if _matches_grammar(line):
            # A complete entry that is not listed, such as DOS "." and ".."
            continue

        if _has_entry_shape(line) and index < len(lines) and lines[index]:
            # A truncated entry head is retried together with the next line
            joined = line + lines[index]
            if parse_line(joined, now=now) is not None:
                lines[index] = joined
                continue

        if last_raw is not None:
            merged = parse_line(last_raw + line, now=now)
            if merged is not None:
                entries[-1] = merged
                last_raw = last_raw + line

    return entries
