"""
Type aliases shared by the record model, the codecs and the directory client.

python-ldap speaks in modlists of bytes; the record model speaks in text or
binary values.  The aliases below name both sides.
"""

#: A single attribute value: text, or binary when it is not valid UTF-8 or the
#: attribute is a binary attribute.
Value = str | bytes

AttributePairs = tuple[tuple[str, tuple[Value, ...]], ...]

AddModlistEntry = tuple[str, list[bytes]]
AddModlist = list[AddModlistEntry]
ModifyModlistEntry = tuple[int, str, list[bytes] | None]
ModifyModlist = list[ModifyModlistEntry]
LDAPData = tuple[str, dict[str, list[bytes]]]
