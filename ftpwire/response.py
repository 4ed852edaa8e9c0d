"""Framing of the FTP control channel into logical responses."""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)

# Intermediate codes sent when a data transfer starts
MARK_CODES = frozenset({125, 150})
GREETING_CODE = 220
TRANSFER_COMPLETE_CODE = 226
PASSIVE_MODE_CODE = 227

RE_FINAL = re.compile(r"^(\d{3})(?: |$)")
RE_OPENING = re.compile(r"^(\d{3})-")
RE_NEWLINE = re.compile(r"\r?\n")


@dataclass(frozen=True)
class Response:
    code: int
    text: str
    is_multiline: bool = False

    @property
    def is_mark(self) -> bool:
        return self.code in MARK_CODES

    @property
    def is_error(self) -> bool:
        return self.code >= 400

    @property
    def lines(self) -> List[str]:
        return self.text.split("\n")

    def __str__(self) -> str:
        return self.text


class ResponseFramer:
    """Turns control-channel text into discrete :class:`Response` objects.

    Text may arrive split at arbitrary points; an incomplete trailing line is
    kept until the rest of it arrives. A multiline block opened by
    ``"<code>-"`` only closes on a line starting with the same code followed
    by a space. Any line in between belongs to the message text, even when
    it looks like a response of its own.
    """

    def __init__(self) -> None:
        self._partial = ""
        self._block: List[str] = []
        self._block_code: Optional[int] = None

    @property
    def in_block(self) -> bool:
        return self._block_code is not None

    def reset(self) -> None:
        self._partial = ""
        self._block = []
        self._block_code = None

    def feed(self, data: str) -> List[Response]:
        """Consume a chunk of text and return the responses it completed."""
        lines = RE_NEWLINE.split(self._partial + data)
        self._partial = lines.pop()

        responses: List[Response] = []
        for line in lines:
            response = self._feed_line(line)
            if response is not None:
                logger.debug("<- %s", response.text)
                responses.append(response)
        return responses

    def _feed_line(self, line: str) -> Optional[Response]:
        if self._block_code is not None:
            self._block.append(line)
            final = RE_FINAL.match(line)
            if final and int(final.group(1)) == self._block_code:
                response = Response(
                    code=self._block_code,
                    text="\n".join(self._block),
                    is_multiline=True,
                )
                self._block = []
                self._block_code = None
                return response
            return None

        opening = RE_OPENING.match(line)
        if opening:
            self._block_code = int(opening.group(1))
            self._block = [line]
            return None

        final = RE_FINAL.match(line)
        if final:
            return Response(code=int(final.group(1)), text=line)

        if line:
            logger.debug("Dropping text outside of a response: %r", line)
        return None
