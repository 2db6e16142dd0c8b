"""
Records as Ion documents.

Each record is one top-level Ion struct::

    {dn:"uid=joe,ou=people,o=example",attributes:{objectClass:["top","person"],cn:["Joe"]}}
    {dn:"uid=joe,ou=people,o=example",changeType:"modify",modifications:[{operation:"REPLACE",attribute:"cn",values:["Joseph"]}]}
    {dn:"uid=joe,ou=people,o=example",changeType:"moddn",newDn:{newrdn:"uid=joseph",deleteoldrdn:true}}

Binary values are written as ``binary::"<base64>"``.  An attribute whose
values are all blank is written as ``name:null``; on read ``null``, ``[]`` and
``null`` list elements all stand for the empty string.
"""

import base64
import binascii
import enum
import logging
from collections.abc import Callable, Iterator
from typing import IO, Any

from amazon.ion.core import IonType

from .exceptions import DocumentShapeError, IonSyntaxError
from .ion import (
    BINARY_ANNOTATION,
    RESYNC_RE,
    annotations,
    as_text,
    binary_text,
    dumps,
    ion_type,
    loads,
    split_values,
    struct_fields,
)
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
    is_blank,
)
from .typing import Value

logger = logging.getLogger(__name__)


class DocumentField(enum.Enum):
    """Every field name the document format knows about."""

    DN = "dn"
    CHANGE_TYPE = "changeType"
    ATTRIBUTES = "attributes"
    MODIFICATIONS = "modifications"
    NEW_DN = "newDn"
    # modifications[]
    OPERATION = "operation"
    ATTRIBUTE = "attribute"
    VALUES = "values"
    # newDn
    NEW_RDN = "newrdn"
    DELETE_OLD_RDN = "deleteoldrdn"
    NEW_SUPERIOR = "newsuperior"

    @classmethod
    def lookup(cls, name: str) -> "DocumentField | None":
        try:
            return cls(name)
        except ValueError:
            return None


RECORD_FIELDS = frozenset(
    {
        DocumentField.DN,
        DocumentField.CHANGE_TYPE,
        DocumentField.ATTRIBUTES,
        DocumentField.MODIFICATIONS,
        DocumentField.NEW_DN,
    }
)
MODIFICATION_FIELDS = frozenset(
    {DocumentField.OPERATION, DocumentField.ATTRIBUTE, DocumentField.VALUES}
)
NEW_DN_FIELDS = frozenset(
    {
        DocumentField.NEW_RDN,
        DocumentField.DELETE_OLD_RDN,
        DocumentField.NEW_SUPERIOR,
    }
)

#: Fields each record kind uses besides ``dn`` and ``changeType``.
KIND_FIELDS: dict[str | None, frozenset[DocumentField]] = {
    None: frozenset({DocumentField.ATTRIBUTES}),
    "add": frozenset({DocumentField.ATTRIBUTES}),
    "delete": frozenset(),
    "modify": frozenset({DocumentField.MODIFICATIONS}),
    "moddn": frozenset({DocumentField.NEW_DN}),
}

CHANGE_TYPE_ALIASES = {"modrdn": "moddn"}

TEXT_TYPES = frozenset({IonType.STRING, IonType.SYMBOL})


# ========================================
# Decoding
# ========================================


def _fields(
    value: Any, allowed: frozenset[DocumentField], context: str
) -> dict[DocumentField, Any]:
    """
    Map the fields of struct ``value`` onto :py:class:`DocumentField` members.

    Names not in ``allowed`` are logged and skipped.

    Raises:
        DocumentShapeError: ``value`` is not a struct, or a field is repeated

    """
    if ion_type(value) is not IonType.STRUCT:
        msg = f"{context} must be a struct, not {_type_name(value)}"
        raise DocumentShapeError(msg)
    fields: dict[DocumentField, Any] = {}
    for name, item in struct_fields(value):
        field = DocumentField.lookup(name)
        if field is None or field not in allowed:
            logger.warning(
                "ldapion.documents.field.ignored context=%s field=%s", context, name
            )
            continue
        if field in fields:
            msg = f"{context}: field {name!r} appears more than once"
            raise DocumentShapeError(msg)
        fields[field] = item
    return fields


def _require(fields: dict[DocumentField, Any], field: DocumentField, context: str) -> Any:
    if field not in fields:
        msg = f"{context}: missing required field {field.value!r}"
        raise DocumentShapeError(msg)
    return fields[field]


def _text(value: Any, field: DocumentField, context: str) -> str:
    if ion_type(value) not in TEXT_TYPES:
        msg = f"{context}: {field.value!r} must be text, not {_type_name(value)}"
        raise DocumentShapeError(msg)
    return as_text(value)


def _type_name(value: Any) -> str:
    kind = ion_type(value)
    if kind is None:
        return type(value).__name__
    return kind.name.lower()


def _value(value: Any, context: str) -> Value:
    kind = ion_type(value)
    if kind is IonType.NULL:
        return ""
    if kind in (IonType.BLOB, IonType.CLOB):
        return bytes(value)
    if kind in TEXT_TYPES:
        if BINARY_ANNOTATION in annotations(value):
            try:
                return base64.b64decode(as_text(value), validate=True)
            except (binascii.Error, ValueError) as e:
                msg = f"{context}: invalid base64 in binary value"
                raise DocumentShapeError(msg) from e
        return as_text(value)
    msg = f"{context}: attribute values must be text or binary, not {_type_name(value)}"
    raise DocumentShapeError(msg)


def _list(value: Any, field: str, context: str) -> list:
    if ion_type(value) is not IonType.LIST:
        msg = f"{context}: {field!r} must be a list, not {_type_name(value)}"
        raise DocumentShapeError(msg)
    return list(value)


def _attribute_pairs(value: Any, dn: str) -> list[tuple[str, Value]]:
    if ion_type(value) is not IonType.STRUCT:
        msg = f"{dn}: 'attributes' must be a struct, not {_type_name(value)}"
        raise DocumentShapeError(msg)
    pairs: list[tuple[str, Value]] = []
    for name, values in struct_fields(value):
        context = f"{dn}: attribute {name!r}"
        if ion_type(values) is IonType.NULL:
            # the reverse of the blank-value collapse
            pairs.append((name, ""))
            continue
        items = _list(values, name, dn)
        if not items:
            pairs.append((name, ""))
        pairs.extend((name, _value(item, context)) for item in items)
    return pairs


def _modification(value: Any, dn: str, index: int) -> Modification:
    context = f"{dn}: modifications[{index}]"
    fields = _fields(value, MODIFICATION_FIELDS, context)
    operation_name = _text(
        _require(fields, DocumentField.OPERATION, context),
        DocumentField.OPERATION,
        context,
    )
    try:
        operation = ModOperation.parse(operation_name)
    except ValueError as e:
        raise DocumentShapeError(f"{context}: {e}") from e
    attribute = _text(
        _require(fields, DocumentField.ATTRIBUTE, context),
        DocumentField.ATTRIBUTE,
        context,
    )
    values = fields.get(DocumentField.VALUES)
    if ion_type(values) is IonType.NULL:
        values = []
    values = _list(values, "values", context)
    return Modification(
        operation, attribute, tuple(_value(item, context) for item in values)
    )


def _decode_entry(dn: str, fields: dict[DocumentField, Any]) -> Record:
    return Entry.from_pairs(
        dn, _attribute_pairs(_require(fields, DocumentField.ATTRIBUTES, dn), dn)
    )


def _decode_add(dn: str, fields: dict[DocumentField, Any]) -> Record:
    return AddChange.from_pairs(
        dn, _attribute_pairs(_require(fields, DocumentField.ATTRIBUTES, dn), dn)
    )


def _decode_delete(dn: str, fields: dict[DocumentField, Any]) -> Record:  # noqa: ARG001
    return DeleteChange(dn)


def _decode_modify(dn: str, fields: dict[DocumentField, Any]) -> Record:
    modifications = _list(
        _require(fields, DocumentField.MODIFICATIONS, dn), "modifications", dn
    )
    return ModifyChange(
        dn,
        tuple(
            _modification(item, dn, index) for index, item in enumerate(modifications)
        ),
    )


def _decode_moddn(dn: str, fields: dict[DocumentField, Any]) -> Record:
    context = f"{dn}: newDn"
    new_dn = _fields(_require(fields, DocumentField.NEW_DN, dn), NEW_DN_FIELDS, context)
    new_rdn = _text(
        _require(new_dn, DocumentField.NEW_RDN, context), DocumentField.NEW_RDN, context
    )
    delete_old_rdn = _require(new_dn, DocumentField.DELETE_OLD_RDN, context)
    if ion_type(delete_old_rdn) is not IonType.BOOL:
        msg = f"{context}: 'deleteoldrdn' must be a boolean, not {_type_name(delete_old_rdn)}"
        raise DocumentShapeError(msg)
    new_superior = new_dn.get(DocumentField.NEW_SUPERIOR)
    if ion_type(new_superior) is IonType.NULL:
        new_superior = None
    else:
        new_superior = _text(new_superior, DocumentField.NEW_SUPERIOR, context)
    return ModifyDnChange(dn, new_rdn, bool(delete_old_rdn), new_superior)


DECODERS: dict[str | None, Callable[[str, dict[DocumentField, Any]], Record]] = {
    None: _decode_entry,
    "add": _decode_add,
    "delete": _decode_delete,
    "modify": _decode_modify,
    "moddn": _decode_moddn,
}


def decode_document(value: Any) -> Record:
    """
    Turn one top-level Ion value, as read by :py:func:`ldapion.ion.loads`,
    into a record.

    Raises:
        DocumentShapeError: ``value`` does not describe a record
        ValueError: the record could not be constructed

    """
    fields = _fields(value, RECORD_FIELDS, "record")
    dn = _text(_require(fields, DocumentField.DN, "record"), DocumentField.DN, "record")
    changetype = None
    if DocumentField.CHANGE_TYPE in fields:
        changetype = _text(
            fields[DocumentField.CHANGE_TYPE], DocumentField.CHANGE_TYPE, dn
        ).strip().lower()
        changetype = CHANGE_TYPE_ALIASES.get(changetype, changetype)
        if changetype not in DECODERS:
            msg = f"{dn}: invalid changeType {changetype!r}"
            raise DocumentShapeError(msg)
    for field in fields.keys() - KIND_FIELDS[changetype] - {
        DocumentField.DN,
        DocumentField.CHANGE_TYPE,
    }:
        logger.warning(
            "ldapion.documents.field.ignored dn=%s changetype=%s field=%s",
            dn,
            changetype or "entry",
            field.value,
        )
    return DECODERS[changetype](dn, fields)


class DocumentDecoder:
    """
    Lazily decode a stream of Ion documents into records.

    Yields one :py:data:`ldapion.records.Record` or
    :py:class:`ldapion.records.RecordError` per top-level value.  The stream is
    read one line at a time, and each record is yielded as soon as its closing
    brace has been read.  A value that does not parse costs only itself; when
    it never closes, decoding resumes at the next line that starts a struct.

    Args:
        stream: a text stream, or a binary stream of UTF-8 encoded Ion text

    """

    def __init__(self, stream: IO) -> None:
        self.stream = stream
        self._results = self._decode(split_values(self._lines()))

    def __iter__(self) -> "DocumentDecoder":
        return self

    def __next__(self) -> Record | RecordError:
        return next(self._results)

    def _lines(self) -> Iterator[str]:
        for line in self.stream:
            if isinstance(line, bytes):
                # "\n" never occurs inside a multi-byte UTF-8 sequence
                line = line.decode("utf-8")
            yield line

    def _error(self, message: str, raw: str, line: int) -> RecordError:
        logger.warning(
            "ldapion.documents.record.invalid line=%d error=%s record=%r",
            line,
            message,
            raw,
        )
        return RecordError(message, tuple(raw.splitlines()), line)

    def _decode(
        self, chunks: Iterator[tuple[int, str]]
    ) -> Iterator[Record | RecordError]:
        for line, text in chunks:
            try:
                values = loads(text)
            except IonSyntaxError as e:
                match = RESYNC_RE.search(text)
                if match is None:
                    yield self._error(str(e), text.strip(), line)
                    continue
                head = text[: match.start()]
                yield self._error(str(e), head.strip(), line)
                rest = text[match.start() + 1 :]
                yield from self._decode(
                    split_values(
                        rest.splitlines(keepends=True), line + head.count("\n") + 1
                    )
                )
                continue
            for value in values:
                try:
                    yield decode_document(value)
                except (DocumentShapeError, ValueError, TypeError) as e:
                    yield self._error(str(e), text.strip(), line)


def read_documents(stream: IO) -> Iterator[Record | RecordError]:
    return iter(DocumentDecoder(stream))


# ========================================
# Encoding
# ========================================


def _ion_value(value: Value) -> Any:
    if isinstance(value, bytes):
        return binary_text(base64.b64encode(value).decode("ascii"))
    return value


def _attributes_struct(attributes) -> dict[str, Any]:
    struct: dict[str, Any] = {}
    for name, values in attributes:
        if all(is_blank(value) for value in values):
            struct[name] = None
        else:
            struct[name] = [_ion_value(value) for value in values]
    return struct


def document(record: Record) -> dict[str, Any]:
    """
    Return ``record`` as an Ion struct, fields in their canonical order.

    Raises:
        TypeError: ``record`` is not a record

    """
    struct: dict[str, Any] = {"dn": record.dn}
    if isinstance(record, Entry):
        struct["attributes"] = _attributes_struct(record.attributes)
    elif isinstance(record, AddChange):
        struct["changeType"] = "add"
        struct["attributes"] = _attributes_struct(record.attributes)
    elif isinstance(record, DeleteChange):
        struct["changeType"] = "delete"
    elif isinstance(record, ModifyChange):
        struct["changeType"] = "modify"
        struct["modifications"] = [
            {
                "operation": modification.operation.value.upper(),
                "attribute": modification.attribute,
                "values": [_ion_value(value) for value in modification.values],
            }
            for modification in record.modifications
        ]
    elif isinstance(record, ModifyDnChange):
        struct["changeType"] = "moddn"
        new_dn: dict[str, Any] = {
            "newrdn": record.new_rdn,
            "deleteoldrdn": record.delete_old_rdn,
        }
        if record.new_superior is not None:
            new_dn["newsuperior"] = record.new_superior
        struct["newDn"] = new_dn
    else:
        msg = f"Cannot encode {type(record).__name__} as an Ion document"
        raise TypeError(msg)
    return struct


def encode_document(record: Record) -> str:
    """Return ``record`` as a single line of Ion text, without a newline."""
    return dumps(document(record))


class DocumentEncoder:
    """Write records to a text stream, one Ion struct per line."""

    def __init__(self, stream: IO[str]) -> None:
        self.stream = stream

    def encode(self, record: Record) -> str:
        return encode_document(record) + "\n"

    def write(self, record: Record) -> None:
        self.stream.write(self.encode(record))
