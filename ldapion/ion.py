"""
Ion text reading and writing, on top of :py:mod:`amazon.ion`.

Parsing is done by :py:func:`amazon.ion.simpleion.loads`.  What this module
adds is the part a record stream needs and ``simpleion`` does not offer:
cutting a stream into top-level values lazily, line by line, so that one
malformed record does not cost the rest of the stream.

:py:func:`split_values` tracks brackets, strings, symbols and comments, and
ends a chunk whenever the bracket depth drops back to zero.  Each chunk is then
parsed on its own.  When a chunk does not parse (usually because a closing
bracket is missing, so the chunk swallowed the records after it),
:py:data:`RESYNC_RE` finds the next line that opens a struct and reading
resumes there.
"""

import re
from collections.abc import Iterable, Iterator
from typing import Any

from amazon.ion import simpleion
from amazon.ion.core import IonType
from amazon.ion.exceptions import IonException
from amazon.ion.simple_types import IonPyText, is_null

from .exceptions import IonSyntaxError

#: The annotation marking a string as base64 encoded binary data.
BINARY_ANNOTATION = "binary"

#: Where to resume after a chunk that does not parse.
RESYNC_RE = re.compile(r"\n[ \t]*\{")

OPENERS = "{[("
CLOSERS = "}])"


def split_values(lines: Iterable[str], first_line: int = 1) -> Iterator[tuple[int, str]]:
    """
    Cut Ion text into chunks that each hold one top-level container.

    Text between containers (bare top-level scalars, annotations) stays with
    the container that follows it.  Whitespace and comments before a chunk are
    dropped.  Unbalanced text at the end of the input becomes a final chunk of
    its own.

    Args:
        lines: the text, one line at a time, line endings included
        first_line: the number of the first line

    Yields:
        ``(line number, text)`` pairs, where the line number is the line of the
        first character of ``text``.

    """
    depth = 0
    # None, '"', "'", "'''", "/*" or "{{"
    state: str | None = None
    pending: list[str] = []
    start: int | None = None
    for number, line in enumerate(lines, first_line):
        mark = 0
        i = 0
        while i < len(line):
            c = line[i]
            closed = False
            if state == "/*":
                if line.startswith("*/", i):
                    state = None
                    i += 1
            elif state == "{{":
                # base64 may contain "//", so blobs get a state of their own
                if line.startswith("}}", i):
                    state = None
                    i += 1
                    closed = depth == 0
            elif state == "'''":
                if c == "\\":
                    i += 1
                elif line.startswith("'''", i):
                    state = None
                    i += 2
            elif state is not None:
                if c == "\\":
                    i += 1
                elif c == state or c == "\n":
                    state = None
            elif line.startswith("//", i):
                break
            elif line.startswith("/*", i):
                state = "/*"
                i += 1
            elif not c.isspace():
                if start is None:
                    start = number
                    pending = []
                    mark = i
                if line.startswith("'''", i):
                    state = "'''"
                    i += 2
                elif line.startswith("{{", i):
                    state = "{{"
                    i += 1
                elif c in "\"'":
                    state = c
                elif c in OPENERS:
                    depth += 1
                elif c in CLOSERS:
                    depth = max(depth - 1, 0)
                    closed = depth == 0
            if closed:
                pending.append(line[mark : i + 1])
                yield start, "".join(pending)
                pending = []
                start = None
                mark = i + 1
            i += 1
        if state in ('"', "'"):
            # short strings and quoted symbols end with their line
            state = None
        if start is not None:
            pending.append(line[mark:])
    if start is not None:
        yield start, "".join(pending)


def loads(text: str) -> list:
    """
    Parse every top-level value of ``text``.

    System values (the ``$ion_1_0`` marker, local symbol tables) are not
    returned.

    Raises:
        IonSyntaxError: ``text`` is not valid Ion

    """
    try:
        return list(simpleion.loads(text, single_value=False))
    except (IonException, ValueError, TypeError) as e:
        raise IonSyntaxError(str(e) or type(e).__name__) from e


def dumps(value: Any) -> str:
    """
    Serialize one value as a line of Ion text, without a version marker.

    :py:class:`dict` becomes a struct in key order, :py:class:`bytes` a blob,
    and ``None`` a null.  Use :py:func:`binary_text` for ``binary::``
    annotated base64 strings.
    """
    return simpleion.dumps(value, binary=False, omit_version_marker=True)


def binary_text(encoded: str) -> IonPyText:
    """Return ``encoded`` as a string annotated with ``binary``."""
    return IonPyText.from_value(IonType.STRING, encoded, (BINARY_ANNOTATION,))


def ion_type(value: Any) -> IonType | None:
    """
    Return the Ion type of a value read by :py:func:`loads`.

    Nulls of every type (``null``, ``null.string`` ...) give
    :py:attr:`IonType.NULL`.
    """
    if is_null(value):
        return IonType.NULL
    return getattr(value, "ion_type", None)


def annotations(value: Any) -> tuple[str, ...]:
    return tuple(getattr(a, "text", a) for a in getattr(value, "ion_annotations", ()))


def as_text(value: Any) -> str:
    """Return the text of a string or symbol value."""
    if ion_type(value) is IonType.SYMBOL:
        return value.text
    return str(value)


def struct_fields(value: Any) -> list[tuple[str, Any]]:
    """Return the ``(name, value)`` pairs of a struct, repeated names included."""
    return [(getattr(name, "text", name), item) for name, item in value.items()]
