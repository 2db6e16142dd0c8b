"""
Exception hierarchy for ldapion.

Per-record problems are *not* raised through the codecs: decoders turn them
into :py:class:`ldapion.records.RecordError` values.  The exceptions below are
used inside a single record's parse (and converted at the block boundary), and
for unit-level and run-level failures.
"""


class LdapIonError(Exception):
    """Root of every error raised by this package."""


class LdifSyntaxError(LdapIonError, ValueError):
    """
    Raised while parsing one LDIF block when it does not follow RFC2849.

    Args:
        message: what went wrong
        line: the line number (1-based) in the input stream, if known

    """

    def __init__(self, message: str, line: int | None = None) -> None:
        super().__init__(message)
        self.line = line


class IonSyntaxError(LdapIonError, ValueError):
    """
    Raised when a piece of Ion text does not parse.

    Args:
        message: what went wrong, as reported by :py:mod:`amazon.ion`
        line: the line number (1-based) in the input stream, if known

    """

    def __init__(self, message: str, line: int | None = None) -> None:
        super().__init__(message)
        self.line = line



class DocumentShapeError(LdapIonError, ValueError):
    """
    Raised when an Ion struct is syntactically fine but does not describe a
    record: missing required field, wrong value type, unknown changeType ...
    """


class TranscodeError(LdapIonError):
    """Raised when not a single input unit could be transcoded."""


class DirectoryError(LdapIonError):
    """Raised when a directory operation cannot be carried out."""
