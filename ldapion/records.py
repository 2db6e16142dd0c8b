"""
The record model shared by the LDIF and Ion codecs.

A record is one logical block of an LDIF or Ion stream: either a plain
directory entry, or one of the four kinds of change records defined by RFC2849.
Records are immutable and compare equal only to records of the same kind with
the same fields.

Attribute values are either text (:py:class:`str`) or binary
(:py:class:`bytes`).  Which one a value is does not depend on how it was
written down (``::`` in LDIF, ``binary::`` in Ion), but on the value itself and
on the attribute it belongs to; see :py:func:`coerce_value`.
"""

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import ClassVar

from .typing import AttributePairs, Value

#: Attribute types whose values are binary even when they happen to be valid
#: UTF-8.  Compared case-insensitively.
BINARY_ATTRIBUTES: frozenset[str] = frozenset(
    name.lower()
    for name in (
        "audio",
        "authorityRevocationList",
        "cACertificate",
        "certificateRevocationList",
        "crossCertificatePair",
        "jpegPhoto",
        "msExchMailboxGuid",
        "objectGUID",
        "objectSid",
        "photo",
        "thumbnailPhoto",
        "userCertificate",
        "userPKCS12",
        "userSMIMECertificate",
    )
)


def is_binary_attribute(attribute: str) -> bool:
    """
    Return ``True`` if values of ``attribute`` are always binary.

    An attribute is binary if it carries the ``;binary`` transfer option, or if
    its type is one of :py:data:`BINARY_ATTRIBUTES`.

    Args:
        attribute: an attribute description, possibly with options
            (``userCertificate;binary``)

    Returns:
        Whether values of this attribute should be kept as bytes.

    """
    attribute_type, *options = attribute.lower().split(";")
    return "binary" in options or attribute_type in BINARY_ATTRIBUTES


def coerce_value(attribute: str, value: Value) -> Value:
    """
    Normalize an attribute value to its canonical text or binary form.

    * values of binary attributes are always :py:class:`bytes`
    * other values are :py:class:`str` when they are valid UTF-8, and stay
      :py:class:`bytes` otherwise

    Every decoder funnels values through here, which is what makes encoding a
    record and decoding it again give back the same record.

    Args:
        attribute: the attribute the value belongs to
        value: the raw value

    Raises:
        TypeError: ``value`` is neither ``str`` nor ``bytes``

    Returns:
        The normalized value.

    """
    if isinstance(value, str):
        if is_binary_attribute(attribute):
            return value.encode("utf-8")
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        value = bytes(value)
        if is_binary_attribute(attribute):
            return value
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            return value
    msg = f"{attribute}: attribute values must be str or bytes, not {type(value).__name__}"
    raise TypeError(msg)


def is_blank(value: Value) -> bool:
    """Return ``True`` for empty or whitespace-only text values."""
    return isinstance(value, str) and not value.strip()


def _require_dn(dn: str, kind: str) -> None:
    if not isinstance(dn, str):
        msg = f"{kind}: dn must be a str, not {type(dn).__name__}"
        raise TypeError(msg)
    if not dn:
        msg = f"{kind}: dn must not be empty"
        raise ValueError(msg)


def group_attributes(pairs: Iterable[tuple[str, Value]]) -> AttributePairs:
    """
    Group ``(name, value)`` pairs into an ordered attribute multimap.

    Attribute names keep the order of their first occurrence.  Names are
    compared case-insensitively; the spelling of the first occurrence wins.
    Values of a repeated name are appended in source order, duplicates
    included.

    Args:
        pairs: ``(attribute name, value)`` pairs in source order

    Returns:
        A tuple of ``(name, values)`` pairs.

    """
    names: dict[str, str] = {}
    grouped: dict[str, list[Value]] = {}
    for name, value in pairs:
        key = name.lower()
        if key not in names:
            names[key] = name
            grouped[key] = []
        grouped[key].append(coerce_value(names[key], value))
    return tuple((names[key], tuple(values)) for key, values in grouped.items())


def _normalize_attributes(attributes: Iterable, kind: str) -> AttributePairs:
    if isinstance(attributes, Mapping):
        attributes = attributes.items()
    pairs: list[tuple[str, Value]] = []
    for name, values in attributes:
        if not isinstance(name, str) or not name:
            msg = f"{kind}: attribute names must be non-empty strings"
            raise ValueError(msg)
        if isinstance(values, (str, bytes)):
            msg = f"{kind}: values of {name!r} must be a sequence of values"
            raise TypeError(msg)
        values = tuple(values)
        if not values:
            msg = f"{kind}: attribute {name!r} has no values"
            raise ValueError(msg)
        pairs.extend((name, value) for value in values)
    return group_attributes(pairs)


class ModOperation(enum.Enum):
    """The four modify operations of an LDIF ``changetype: modify`` record."""

    ADD = "add"
    DELETE = "delete"
    REPLACE = "replace"
    INCREMENT = "increment"

    @classmethod
    def parse(cls, name: str) -> "ModOperation":
        """
        Look up an operation by its LDIF (``add``) or Ion (``ADD``) name.

        Raises:
            ValueError: ``name`` is not a modify operation

        """
        try:
            return cls(name.strip().lower())
        except ValueError as e:
            msg = f"Invalid modify operation: {name!r}"
            raise ValueError(msg) from e


@dataclass(frozen=True)
class Modification:
    """
    One step of a modify change record.

    Args:
        operation: what to do with the attribute
        attribute: the attribute to modify
        values: the operand values, in order

    """

    operation: ModOperation
    attribute: str
    values: tuple[Value, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.operation, ModOperation):
            msg = f"Modification.operation must be a ModOperation, not {self.operation!r}"
            raise TypeError(msg)
        if not self.attribute:
            msg = "Modification.attribute must not be empty"
            raise ValueError(msg)
        object.__setattr__(
            self,
            "values",
            tuple(coerce_value(self.attribute, value) for value in self.values),
        )


@dataclass(frozen=True)
class _AttributeRecord:
    dn: str
    attributes: AttributePairs = ()

    changetype: ClassVar[str | None] = None

    def __post_init__(self) -> None:
        kind = type(self).__name__
        _require_dn(self.dn, kind)
        attributes = _normalize_attributes(self.attributes, kind)
        for name, _ in attributes:
            # LDIF reads "changetype:" after the dn as the record kind
            if name.lower() == "changetype":
                msg = f"{kind}: 'changetype' cannot be used as an attribute name"
                raise ValueError(msg)
        object.__setattr__(self, "attributes", attributes)

    @classmethod
    def from_pairs(cls, dn: str, pairs: Iterable[tuple[str, Value]]):
        """
        Build a record from ``(name, value)`` pairs, one per value, in source
        order.
        """
        return cls(dn, group_attributes(pairs))

    @classmethod
    def from_mapping(cls, dn: str, attributes: Mapping[str, Iterable[Value]]):
        """Build a record from a ``{name: [values]}`` mapping."""
        return cls(dn, tuple((name, tuple(values)) for name, values in attributes.items()))

    def get(self, name: str) -> tuple[Value, ...]:
        """
        Return the values of attribute ``name`` (case-insensitive), or an empty
        tuple.
        """
        key = name.lower()
        for attribute, values in self.attributes:
            if attribute.lower() == key:
                return values
        return ()

    def as_dict(self) -> dict[str, list[Value]]:
        return {name: list(values) for name, values in self.attributes}


@dataclass(frozen=True)
class Entry(_AttributeRecord):
    """A full directory entry: a dn plus its attributes."""


@dataclass(frozen=True)
class AddChange(_AttributeRecord):
    """
    A ``changetype: add`` change record.

    RFC2849 requires at least one attribute in an add change record.
    """

    changetype: ClassVar[str | None] = "add"

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.attributes:
            msg = f"{type(self).__name__}: an add change record needs at least one attribute"
            raise ValueError(msg)


@dataclass(frozen=True)
class DeleteChange:
    """A ``changetype: delete`` change record."""

    dn: str

    changetype: ClassVar[str | None] = "delete"

    def __post_init__(self) -> None:
        _require_dn(self.dn, type(self).__name__)


@dataclass(frozen=True)
class ModifyChange:
    """
    A ``changetype: modify`` change record.

    The order of :py:attr:`modifications` is significant: the directory server
    applies them one after the other.
    """

    dn: str
    modifications: tuple[Modification, ...] = field(default_factory=tuple)

    changetype: ClassVar[str | None] = "modify"

    def __post_init__(self) -> None:
        _require_dn(self.dn, type(self).__name__)
        modifications = tuple(self.modifications)
        for modification in modifications:
            if not isinstance(modification, Modification):
                msg = f"ModifyChange.modifications must hold Modification objects, not {modification!r}"
                raise TypeError(msg)
        object.__setattr__(self, "modifications", modifications)


@dataclass(frozen=True)
class ModifyDnChange:
    """
    A ``changetype: moddn`` (or ``modrdn``) change record.

    Args:
        dn: the entry to rename
        new_rdn: the new RDN of the entry
        delete_old_rdn: whether to remove the old RDN value from the entry
        new_superior: the new parent of the entry, or ``None`` to keep it where
            it is

    """

    dn: str
    new_rdn: str
    delete_old_rdn: bool
    new_superior: str | None = None

    changetype: ClassVar[str | None] = "moddn"

    def __post_init__(self) -> None:
        _require_dn(self.dn, type(self).__name__)
        if not isinstance(self.new_rdn, str) or not self.new_rdn:
            msg = "ModifyDnChange.new_rdn must be a non-empty str"
            raise ValueError(msg)
        if not isinstance(self.delete_old_rdn, bool):
            msg = f"ModifyDnChange.delete_old_rdn must be a bool, not {self.delete_old_rdn!r}"
            raise TypeError(msg)
        if self.new_superior is not None and not isinstance(self.new_superior, str):
            msg = "ModifyDnChange.new_superior must be a str or None"
            raise TypeError(msg)


ChangeRecord = AddChange | DeleteChange | ModifyChange | ModifyDnChange
Record = Entry | ChangeRecord

#: Every record class, for isinstance checks.
RECORD_TYPES: tuple[type, ...] = (
    Entry,
    AddChange,
    DeleteChange,
    ModifyChange,
    ModifyDnChange,
)


@dataclass(frozen=True)
class RecordError:
    """
    The outcome of a block that could not be decoded into a record.

    Decoders yield these instead of raising, so that one bad block never stops
    the rest of the stream from being read.

    Args:
        message: why the block was rejected
        raw: the raw lines (or text) of the offending block
        line: where the block starts in the input, if known

    """

    message: str
    raw: tuple[str, ...] = ()
    line: int | None = None

    @property
    def text(self) -> str:
        return "\n".join(self.raw)
