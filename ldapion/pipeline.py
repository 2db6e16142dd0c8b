"""
Batch transcoding between LDIF and Ion documents.

A :py:class:`Transcoder` takes a list of input units (files, usually), decodes
each one with its decoder, re-encodes every record it could decode with its
encoder, and stores one output unit per input unit.  Bad records are counted
and logged but do not stop the unit; a unit fails only when not one of its
records could be translated, or when it cannot be read or written at all.
"""

import io
import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import IO, Any

from .documents import DocumentDecoder, DocumentEncoder
from .exceptions import TranscodeError
from .ldif import LdifDecoder, LdifEncoder
from .records import Record, RecordError
from .storage import Storage

logger = logging.getLogger(__name__)


@dataclass
class UnitResult:
    """Counters for one input unit."""

    #: how many records (good or bad) the unit held
    found: int = 0
    #: how many of them were written to the output
    translated: int = 0

    @property
    def failed(self) -> bool:
        return self.found > 0 and self.translated == 0


@dataclass
class TranscodeResult:
    """
    The outcome of :py:meth:`Transcoder.run`.

    Args:
        outputs: the handles of the output units, in input order
        failed: the refs of the input units that produced no output
        found: records found over all units
        translated: records written over all units

    """

    outputs: list[Any] = field(default_factory=list)
    failed: list[Any] = field(default_factory=list)
    found: int = 0
    translated: int = 0

    def add(self, unit: UnitResult) -> None:
        self.found += unit.found
        self.translated += unit.translated


class Transcoder:
    """
    Transcode input units from one record format to the other.

    Args:
        name: used in log messages
        decoder_class: called with a readable binary stream, returns an
            iterator of records and :py:class:`ldapion.records.RecordError`
        encoder_class: called with a writable text stream, returns an object
            with a ``write(record)`` method
        suffix: the file suffix of output units

    """

    def __init__(
        self,
        name: str,
        decoder_class: Callable[[IO[bytes]], Iterator[Record | RecordError]],
        encoder_class: Callable[[IO[str]], Any],
        suffix: str,
    ) -> None:
        self.name = name
        self.decoder_class = decoder_class
        self.encoder_class = encoder_class
        self.suffix = suffix

    def transcode(self, stream: IO[bytes]) -> tuple[str, UnitResult]:
        """
        Transcode one already opened unit.

        Returns:
            The encoded output text, and the unit's counters.

        Raises:
            OSError: the stream could not be read
            UnicodeDecodeError: the unit is not UTF-8 text

        """
        unit = UnitResult()
        buffer = io.StringIO()
        encoder = self.encoder_class(buffer)
        for result in self.decoder_class(stream):
            unit.found += 1
            if isinstance(result, RecordError):
                continue
            try:
                encoder.write(result)
            except (ValueError, TypeError) as e:
                logger.warning(
                    "ldapion.pipeline.record.encode_failed transcoder=%s dn=%s error=%s",
                    self.name,
                    getattr(result, "dn", None),
                    e,
                )
                continue
            unit.translated += 1
        return buffer.getvalue(), unit

    def run_unit(self, ref: Any, storage: Storage) -> tuple[Any, UnitResult]:
        """
        Transcode the unit named by ``ref`` and store the result.

        Returns:
            The handle of the output unit, or ``None`` if the unit failed; and
            the unit's counters.

        """
        try:
            with storage.open_for_read(ref) as stream:
                text, unit = self.transcode(stream)
        except (OSError, UnicodeDecodeError) as e:
            logger.error(
                "ldapion.pipeline.unit.unreadable transcoder=%s ref=%s error=%s",
                self.name,
                ref,
                e,
            )
            return None, UnitResult()
        if unit.failed:
            logger.error(
                "ldapion.pipeline.unit.failed transcoder=%s ref=%s found=%d",
                self.name,
                ref,
                unit.found,
            )
            return None, unit
        try:
            stream, handle = storage.create_for_write(self.suffix)
            with stream:
                stream.write(text.encode("utf-8"))
        except OSError as e:
            logger.error(
                "ldapion.pipeline.unit.unwritable transcoder=%s ref=%s error=%s",
                self.name,
                ref,
                e,
            )
            return None, unit
        logger.info(
            "ldapion.pipeline.unit.done transcoder=%s ref=%s output=%s found=%d translated=%d",
            self.name,
            ref,
            handle,
            unit.found,
            unit.translated,
        )
        return handle, unit

    def run(self, inputs: Iterable[Any], storage: Storage) -> TranscodeResult:
        """
        Transcode every unit in ``inputs``.

        Units are independent: a failed unit is listed in
        :py:attr:`TranscodeResult.failed` and the run goes on with the next one.
        """
        result = TranscodeResult()
        for ref in inputs:
            handle, unit = self.run_unit(ref, storage)
            result.add(unit)
            if handle is None:
                result.failed.append(ref)
            else:
                result.outputs.append(handle)
        logger.info(
            "ldapion.pipeline.run.done transcoder=%s entries.found=%d entries.translated=%d",
            self.name,
            result.found,
            result.translated,
        )
        return result


LDIF_TO_ION = Transcoder("ldif_to_ion", LdifDecoder, DocumentEncoder, ".ion")
ION_TO_LDIF = Transcoder("ion_to_ldif", DocumentDecoder, LdifEncoder, ".ldif")


def _run(transcoder: Transcoder, inputs: Iterable[Any], storage: Storage) -> TranscodeResult:
    inputs = list(inputs)
    result = transcoder.run(inputs, storage)
    if inputs and not result.outputs:
        msg = "Not a single file has been translated."
        raise TranscodeError(msg)
    return result


def ldif_to_ion(inputs: Iterable[Any], storage: Storage) -> TranscodeResult:
    """
    Convert LDIF units to Ion document units.

    Args:
        inputs: refs of the LDIF units, as understood by ``storage``
        storage: where to read the inputs from and write the outputs to

    Raises:
        TranscodeError: there were inputs, but none of them could be converted

    Returns:
        The output handles and the record counters.

    """
    return _run(LDIF_TO_ION, inputs, storage)


def ion_to_ldif(inputs: Iterable[Any], storage: Storage) -> TranscodeResult:
    """
    Convert Ion document units to LDIF units.

    See :py:func:`ldif_to_ion` for arguments and errors.
    """
    return _run(ION_TO_LDIF, inputs, storage)
