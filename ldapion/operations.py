"""
Directory tasks driven by LDIF files.

:py:class:`Add`, :py:class:`Delete` and :py:class:`Modify` read LDIF units from
a :py:class:`ldapion.storage.Storage` and push every record they hold to the
directory, one by one.  A record the directory refuses is logged and skipped;
the task goes on with the next one.  :py:class:`Search` runs a search and stores
the entries it finds as one LDIF unit.
"""

import io
import logging
import time
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from ldapion import ldap

from .directory import DirectoryClient
from .exceptions import DirectoryError
from .ldif import LdifDecoder, LdifEncoder
from .records import (
    AddChange,
    ChangeRecord,
    Entry,
    Record,
    RecordError,
)
from .storage import Storage

logger = logging.getLogger(__name__)


@dataclass
class OperationReport:
    """
    What an :py:class:`Add`, :py:class:`Delete` or :py:class:`Modify` run did.

    Args:
        requested: how many records were read
        done: how many of them the directory accepted
        mean_time: mean duration of the accepted requests, in seconds

    """

    requested: int = 0
    done: int = 0
    mean_time: float = 0.0


@dataclass
class SearchResult:
    #: the storage handle of the LDIF unit holding the entries
    handle: Any
    found: int
    #: how long the search took, in seconds
    elapsed: float


class Search:
    """
    Search the directory and store the result as LDIF.

    Args:
        client: the directory to search
        storage: where to write the result

    """

    def __init__(self, client: DirectoryClient, storage: Storage) -> None:
        self.client = client
        self.storage = storage

    def run(self, **kwargs) -> SearchResult:
        """
        Run the search.  Keyword arguments are those of
        :py:meth:`ldapion.directory.DirectoryClient.search`.

        Raises:
            ValueError: the search parameters are invalid
            ldap.LDAPError: the search failed
            OSError: the result could not be stored

        """
        start = time.monotonic()
        try:
            entries = self.client.search(**kwargs)
        except ldap.LDAPError as e:
            logger.error("ldapion.operations.search.failed error=%s", e)
            raise
        elapsed = time.monotonic() - start
        buffer = io.StringIO()
        encoder = LdifEncoder(buffer)
        for entry in entries:
            encoder.write(entry)
        stream, handle = self.storage.create_for_write(".ldif")
        with stream:
            stream.write(buffer.getvalue().encode("utf-8"))
        logger.info(
            "ldapion.operations.search.done entries.found=%d search.time=%.3f output=%s",
            len(entries),
            elapsed,
            handle,
        )
        return SearchResult(handle=handle, found=len(entries), elapsed=elapsed)


class RecordOperation:
    """
    Base class for the tasks that push LDIF records to the directory.

    Subclasses implement :py:meth:`process`.
    """

    #: used in log messages and metric names
    name: str = "records"

    def __init__(self, client: DirectoryClient, storage: Storage) -> None:
        self.client = client
        self.storage = storage

    def process(self, record: Record) -> None:
        """
        Send ``record`` to the directory.

        Raises:
            DirectoryError: the record is not something this task can do
            ldap.LDAPError: the directory refused the request

        """
        raise NotImplementedError

    def records(self, ref: Any) -> Iterator[Record | RecordError]:
        with self.storage.open_for_read(ref) as stream:
            yield from LdifDecoder(stream)

    def run(self, inputs: Iterable[Any]) -> OperationReport:
        report = OperationReport()
        times: list[float] = []
        for ref in inputs:
            try:
                for record in self.records(ref):
                    report.requested += 1
                    if isinstance(record, RecordError):
                        logger.error(
                            "ldapion.operations.%s.unreadable ref=%s line=%s record=%r",
                            self.name,
                            ref,
                            record.line,
                            record.raw,
                        )
                        continue
                    start = time.monotonic()
                    try:
                        self.process(record)
                    except (ldap.LDAPError, DirectoryError) as e:
                        logger.error(
                            "ldapion.operations.%s.refused ref=%s dn=%s error=%s",
                            self.name,
                            ref,
                            record.dn,
                            e,
                        )
                        continue
                    times.append(time.monotonic() - start)
                    report.done += 1
            except (OSError, UnicodeDecodeError) as e:
                logger.error(
                    "ldapion.operations.%s.unit_failed ref=%s error=%s",
                    self.name,
                    ref,
                    e,
                )
        if times:
            report.mean_time = sum(times) / len(times)
        logger.info(
            "ldapion.operations.%s.done %s.requested=%d %s.done=%d %s.mean.time=%.3f",
            self.name,
            self.name,
            report.requested,
            self.name,
            report.done,
            self.name,
            report.mean_time,
        )
        return report


class Add(RecordOperation):
    """Create the entries of LDIF files (plain entries or ``add`` records)."""

    name = "additions"

    def process(self, record: Record) -> None:
        if not isinstance(record, (Entry, AddChange)):
            msg = f"{record.dn}: cannot add a {type(record).__name__}"
            raise DirectoryError(msg)
        self.client.add(record)


class Delete(RecordOperation):
    """Delete the entry named by the dn of every record of LDIF files."""

    name = "deletions"

    def process(self, record: Record) -> None:
        self.client.delete(record.dn)


class Modify(RecordOperation):
    """Apply the change records of LDIF files."""

    name = "modifications"

    def process(self, record: Record) -> None:
        if isinstance(record, Entry):
            msg = f"{record.dn}: not a change record"
            raise DirectoryError(msg)
        change: ChangeRecord = record
        self.client.apply(change)


#: Record operations by name, for the command line.
OPERATIONS: dict[str, type[RecordOperation]] = {
    "add": Add,
    "delete": Delete,
    "modify": Modify,
}
