"""
LDIF (RFC2849) reading and writing.

:py:class:`LdifDecoder` turns a stream of LDIF text into
:py:mod:`ldapion.records` records, one per block, and :py:class:`LdifEncoder`
writes records back out.  Reading is lazy and never stops on a bad block: the
block is reported as a :py:class:`ldapion.records.RecordError` and the decoder
moves on to the next one.

Only I/O errors from the underlying stream escape the decoder.
"""

import base64
import binascii
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import IO

from .conf import get_setting
from .exceptions import LdifSyntaxError
from .records import (
    AddChange,
    DeleteChange,
    Entry,
    Modification,
    ModifyChange,
    ModifyDnChange,
    ModOperation,
    Record,
    RecordError,
)
from .typing import Value

logger = logging.getLogger(__name__)

#: AttributeDescription from RFC2849/RFC4512: a descriptor or numeric OID,
#: followed by any number of ``;options``.
ATTRIBUTE_DESCRIPTION_RE = re.compile(
    r"^(?:[A-Za-z][A-Za-z0-9-]*|[0-9]+(?:\.[0-9]+)*)(?:;[A-Za-z0-9-]+)*$"
)

#: Characters that force a value to be base64 encoded wherever they appear.
UNSAFE_CHAR_RE = re.compile(r"[\x00\n\r\x80-\U0010ffff]")

#: Values may not start with one of these and still be written as-is.
UNSAFE_INIT_CHARS = (" ", ":", "<")

#: The changetype values we understand.  ``modrdn`` and ``moddn`` mean the same.
CHANGETYPES = ("add", "delete", "modify", "modrdn", "moddn")


def needs_base64(value: str) -> bool:
    """
    Return ``True`` if ``value`` cannot be written as a plain LDIF
    SAFE-STRING.

    A value must be base64 encoded if it starts with a space, colon or
    less-than sign, ends with a space, or contains NUL, CR, LF or any
    non-ASCII character.
    """
    if not value:
        return False
    return (
        value.startswith(UNSAFE_INIT_CHARS)
        or value.endswith(" ")
        or UNSAFE_CHAR_RE.search(value) is not None
    )


# ========================================
# Decoding
# ========================================


@dataclass
class _LogicalLine:
    number: int
    text: str
    comment: bool = False


@dataclass
class _Block:
    start: int
    raw: list[str] = field(default_factory=list)
    lines: list[_LogicalLine] = field(default_factory=list)
    #: set when the block could not even be split into logical lines
    error: str | None = None


def _split_line(line: _LogicalLine) -> tuple[str, Value, bool]:
    """
    Split an ``attr: value`` / ``attr:: base64`` logical line.

    Returns:
        A 3-tuple of the attribute description, the value (``str`` for plain
        values, ``bytes`` for base64 ones) and whether the value was base64
        encoded.

    Raises:
        LdifSyntaxError: the line is not an attribute/value line

    """
    name, sep, rest = line.text.partition(":")
    if not sep:
        msg = f'Line {line.number}: expected "attribute: value", got {line.text!r}'
        raise LdifSyntaxError(msg, line.number)
    if not ATTRIBUTE_DESCRIPTION_RE.match(name):
        msg = f"Line {line.number}: invalid attribute description {name!r}"
        raise LdifSyntaxError(msg, line.number)
    if rest.startswith(":"):
        encoded = rest[1:].strip()
        try:
            return name, base64.b64decode(encoded, validate=True), True
        except (binascii.Error, ValueError) as e:
            msg = f"Line {line.number}: invalid base64 value for {name!r}"
            raise LdifSyntaxError(msg, line.number) from e
    if rest.startswith("<"):
        msg = f"Line {line.number}: URL values are not supported ({name!r})"
        raise LdifSyntaxError(msg, line.number)
    return name, rest.lstrip(" "), False


def _as_text(value: Value, name: str, number: int) -> str:
    if isinstance(value, str):
        return value
    try:
        return value.decode("utf-8")
    except UnicodeDecodeError as e:
        msg = f"Line {number}: {name} is not valid UTF-8"
        raise LdifSyntaxError(msg, number) from e


class LdifDecoder:
    """
    Lazily decode an LDIF stream into records.

    Iterating the decoder yields one :py:data:`ldapion.records.Record` or
    :py:class:`ldapion.records.RecordError` per block.  The decoder consumes
    the stream and cannot be restarted.

    Args:
        stream: a text stream, or a binary stream of UTF-8 encoded LDIF

    """

    def __init__(self, stream: IO) -> None:
        self.stream = stream
        self._results = self._decode_blocks()

    def __iter__(self) -> "LdifDecoder":
        return self

    def __next__(self) -> Record | RecordError:
        return next(self._results)

    def _read_blocks(self) -> Iterator[_Block]:
        block: _Block | None = None
        for number, line in enumerate(self.stream, start=1):
            error = None
            if isinstance(line, bytes):
                try:
                    line = line.decode("utf-8")
                except UnicodeDecodeError:
                    error = f"Line {number}: not valid UTF-8"
                    line = line.decode("utf-8", "replace")
            line = line.rstrip("\r\n")
            if not line:
                if block is not None:
                    yield block
                    block = None
                continue
            if block is None:
                block = _Block(start=number)
            block.raw.append(line)
            if error and not block.error:
                block.error = error
            if line.startswith(" "):
                if not block.lines:
                    if not block.error:
                        block.error = f"Line {number}: continuation line with nothing to continue"
                    continue
                block.lines[-1].text += line[1:]
            else:
                block.lines.append(
                    _LogicalLine(number, line, comment=line.startswith("#"))
                )
        if block is not None:
            yield block

    def _decode_blocks(self) -> Iterator[Record | RecordError]:
        first = True
        for block in self._read_blocks():
            lines = [line for line in block.lines if not line.comment]
            if not lines and not block.error:
                # comment-only block
                continue
            if first:
                first = False
                if lines and lines[0].text.lower().startswith("version:"):
                    version = lines.pop(0)
                    if version.text.partition(":")[2].strip() != "1":
                        yield self._error(
                            block, f"Line {version.number}: unsupported LDIF version"
                        )
                        continue
                    if not lines and not block.error:
                        continue
            if block.error:
                yield self._error(block, block.error)
                continue
            try:
                yield self.parse_record(lines)
            except (LdifSyntaxError, ValueError, TypeError) as e:
                yield self._error(block, str(e))

    def _error(self, block: _Block, message: str) -> RecordError:
        logger.warning(
            "ldapion.ldif.record.invalid line=%d error=%s record=%r",
            block.start,
            message,
            block.raw,
        )
        return RecordError(message, tuple(block.raw), block.start)

    def parse_record(self, lines: list[_LogicalLine]) -> Record:
        """
        Parse the logical lines of one block into a record.

        Args:
            lines: the unfolded, comment-free lines of the block

        Raises:
            LdifSyntaxError: the block is not a valid LDIF record
            ValueError: the record could not be constructed

        Returns:
            The decoded record.

        """
        first = lines[0]
        name, value, _ = _split_line(first)
        if name.lower() != "dn":
            msg = f'Line {first.number}: first line of record does not start with "dn:"'
            raise LdifSyntaxError(msg, first.number)
        dn = _as_text(value, "dn", first.number)
        if not dn:
            msg = f"Line {first.number}: empty dn"
            raise LdifSyntaxError(msg, first.number)

        rest = lines[1:]
        # Controls belong to change records only; on an entry they are attributes
        controls = 0
        while controls < len(rest) and rest[controls].text.lower().startswith("control:"):
            controls += 1
        if controls < len(rest):
            line = rest[controls]
            name, value, _ = _split_line(line)
            if name.lower() == "changetype":
                changetype = _as_text(value, name, line.number).strip().lower()
                if changetype not in CHANGETYPES:
                    msg = f"Line {line.number}: invalid changetype {changetype!r}"
                    raise LdifSyntaxError(msg, line.number)
                for control in rest[:controls]:
                    logger.warning(
                        "ldapion.ldif.control.ignored dn=%s control=%r", dn, control.text
                    )
                return self._parse_change(dn, changetype, rest[controls + 1 :])
        return Entry.from_pairs(dn, self._attribute_pairs(rest))

    def _attribute_pairs(self, lines: list[_LogicalLine]) -> list[tuple[str, Value]]:
        pairs = []
        for line in lines:
            name, value, _ = _split_line(line)
            pairs.append((name, value))
        return pairs

    def _parse_change(
        self, dn: str, changetype: str, lines: list[_LogicalLine]
    ) -> Record:
        if changetype == "add":
            if not lines:
                msg = f"{dn}: an add change record needs at least one attribute"
                raise LdifSyntaxError(msg)
            return AddChange.from_pairs(dn, self._attribute_pairs(lines))
        if changetype == "delete":
            if lines:
                msg = f"Line {lines[0].number}: unexpected line in delete change record"
                raise LdifSyntaxError(msg, lines[0].number)
            return DeleteChange(dn)
        if changetype == "modify":
            return ModifyChange(dn, tuple(self._parse_modifications(lines)))
        return self._parse_modrdn(dn, lines)

    def _parse_modifications(self, lines: list[_LogicalLine]) -> list[Modification]:
        modifications = []
        i = 0
        while i < len(lines):
            line = lines[i]
            op_name, attribute, _ = _split_line(line)
            try:
                operation = ModOperation.parse(op_name)
            except ValueError as e:
                msg = f"Line {line.number}: invalid modify operation {op_name!r}"
                raise LdifSyntaxError(msg, line.number) from e
            attribute = _as_text(attribute, op_name, line.number).strip()
            if not ATTRIBUTE_DESCRIPTION_RE.match(attribute):
                msg = f"Line {line.number}: invalid attribute description {attribute!r}"
                raise LdifSyntaxError(msg, line.number)
            i += 1
            values: list[Value] = []
            while i < len(lines) and lines[i].text.strip() != "-":
                name, value, _ = _split_line(lines[i])
                if name.lower() != attribute.lower():
                    msg = (
                        f"Line {lines[i].number}: expected a value for {attribute!r}, "
                        f"got {name!r} (missing '-' separator?)"
                    )
                    raise LdifSyntaxError(msg, lines[i].number)
                values.append(value)
                i += 1
            # skip the "-" separator; it may be missing at the end of the block
            i += 1
            modifications.append(Modification(operation, attribute, tuple(values)))
        return modifications

    def _parse_modrdn(self, dn: str, lines: list[_LogicalLine]) -> ModifyDnChange:
        expected = ["newrdn", "deleteoldrdn", "newsuperior"]
        values: dict[str, str] = {}
        for line in lines:
            name, value, _ = _split_line(line)
            if not expected or name.lower() not in expected:
                msg = f"Line {line.number}: unexpected {name!r} line in moddn change record"
                raise LdifSyntaxError(msg, line.number)
            # newrdn, deleteoldrdn, newsuperior must come in this order
            while expected[0] != name.lower():
                if expected[0] != "newsuperior" and expected[0] not in values:
                    msg = f"Line {line.number}: expected {expected[0]!r}, got {name!r}"
                    raise LdifSyntaxError(msg, line.number)
                expected.pop(0)
            expected.pop(0)
            values[name.lower()] = _as_text(value, name, line.number)
        for required in ("newrdn", "deleteoldrdn"):
            if required not in values:
                msg = f"{dn}: moddn change record has no {required!r}"
                raise LdifSyntaxError(msg)
        deleteoldrdn = values["deleteoldrdn"].strip()
        if deleteoldrdn not in ("0", "1"):
            msg = f"{dn}: invalid deleteoldrdn value {deleteoldrdn!r}, expected 0 or 1"
            raise LdifSyntaxError(msg)
        return ModifyDnChange(
            dn,
            new_rdn=values["newrdn"],
            delete_old_rdn=deleteoldrdn == "1",
            new_superior=values.get("newsuperior"),
        )


def read_ldif(stream: IO) -> Iterator[Record | RecordError]:
    """Shortcut for ``iter(LdifDecoder(stream))``."""
    return iter(LdifDecoder(stream))


# ========================================
# Encoding
# ========================================


def fold(line: str, width: int) -> list[str]:
    """
    Fold ``line`` into continuation lines no longer than ``width``.

    Continuation lines start with a single space, per RFC2849.  A ``width``
    of 0 disables folding.
    """
    if width <= 1 or len(line) <= width:
        return [line]
    lines = [line[:width]]
    rest = line[width:]
    while rest:
        lines.append(" " + rest[: width - 1])
        rest = rest[width - 1 :]
    return lines


def attribute_line(name: str, value: Value) -> str:
    """
    Render one ``attr: value`` line, switching to ``attr:: base64`` for binary
    values and unsafe strings.
    """
    if isinstance(value, bytes):
        return f"{name}:: {base64.b64encode(value).decode('ascii')}"
    if needs_base64(value):
        return f"{name}:: {base64.b64encode(value.encode('utf-8')).decode('ascii')}"
    if not value:
        return f"{name}:"
    return f"{name}: {value}"


class LdifEncoder:
    """
    Write records as LDIF blocks to a text stream.

    Args:
        stream: the text stream to write to

    Keyword Args:
        wrap: fold lines longer than this many characters; defaults to the
            ``LDAPION_LDIF_WRAP_COLUMNS`` setting.  0 disables folding.

    """

    def __init__(self, stream: IO[str], wrap: int | None = None) -> None:
        self.stream = stream
        self.wrap: int = get_setting("LDIF_WRAP_COLUMNS") if wrap is None else wrap

    def lines(self, record: Record) -> list[str]:  # noqa: PLR0912
        """
        Return the unfolded lines of ``record``, without the trailing blank
        line.

        Raises:
            TypeError: ``record`` is not a record

        """
        lines = [attribute_line("dn", record.dn)]
        if isinstance(record, Entry):
            lines.extend(
                attribute_line(name, value)
                for name, values in record.attributes
                for value in values
            )
        elif isinstance(record, AddChange):
            lines.append("changetype: add")
            lines.extend(
                attribute_line(name, value)
                for name, values in record.attributes
                for value in values
            )
        elif isinstance(record, DeleteChange):
            lines.append("changetype: delete")
        elif isinstance(record, ModifyChange):
            lines.append("changetype: modify")
            for modification in record.modifications:
                lines.append(
                    f"{modification.operation.value}: {modification.attribute}"
                )
                lines.extend(
                    attribute_line(modification.attribute, value)
                    for value in modification.values
                )
                lines.append("-")
        elif isinstance(record, ModifyDnChange):
            lines.append("changetype: moddn")
            lines.append(attribute_line("newrdn", record.new_rdn))
            lines.append(f"deleteoldrdn: {1 if record.delete_old_rdn else 0}")
            if record.new_superior is not None:
                lines.append(attribute_line("newsuperior", record.new_superior))
        else:
            msg = f"Cannot encode {type(record).__name__} as LDIF"
            raise TypeError(msg)
        return lines

    def encode(self, record: Record) -> str:
        """Return ``record`` as an LDIF block, blank line included."""
        out = []
        for line in self.lines(record):
            out.extend(fold(line, self.wrap))
        out.append("")
        return "\n".join(out) + "\n"

    def write(self, record: Record) -> None:
        self.stream.write(self.encode(record))


def encode_ldif(record: Record, wrap: int | None = None) -> str:
    """
    Encode a single record as an LDIF block.

    Args:
        record: the record to encode

    Keyword Args:
        wrap: line folding width, see :py:class:`LdifEncoder`

    Returns:
        The LDIF text of the record, ending with one blank line.

    """
    return LdifEncoder(None, wrap=wrap).encode(record)  # type: ignore[arg-type]
