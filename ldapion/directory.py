# mypy: disable-error-code="attr-defined"
"""
A thin python-ldap client that speaks in :py:mod:`ldapion.records` records.

:py:class:`DirectoryClient` reads its connection configuration from
``settings.LDAP_SERVERS``, opens one connection per thread for the duration of
each call, and translates between records and python-ldap modlists.
"""

import logging
import re
import threading
from collections.abc import Callable
from functools import wraps
from pathlib import Path
from typing import Any

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from ldap import sasl
from ldap.controls import SimplePagedResultsControl
from ldap_filter import Filter

from ldapion import ldap

from .conf import get_setting
from .exceptions import DirectoryError
from .records import (
    AddChange,
    ChangeRecord,
    DeleteChange,
    Entry,
    ModifyChange,
    ModifyDnChange,
    ModOperation,
)
from .typing import AddModlist, LDAPData, ModifyModlist, Value

logger = logging.getLogger("django-ldapion")

#: Search scopes by name.
SCOPES: dict[str, int] = {
    "base": ldap.SCOPE_BASE,
    "one": ldap.SCOPE_ONELEVEL,
    "sub": ldap.SCOPE_SUBTREE,
    "subordinate": ldap.SCOPE_SUBORDINATE,
}

#: python-ldap modify operations for each :py:class:`ModOperation`.
MOD_OPS: dict[ModOperation, int] = {
    ModOperation.ADD: ldap.MOD_ADD,
    ModOperation.DELETE: ldap.MOD_DELETE,
    ModOperation.REPLACE: ldap.MOD_REPLACE,
    ModOperation.INCREMENT: ldap.MOD_INCREMENT,
}

#: Asks for every user attribute, whatever else was asked for.
ALL_USER_ATTRIBUTES = "0.0"

# A newline and the indentation that follows it, in multi-line filters.
FILTER_NEWLINE_RE = re.compile(r"\n\s*")


# -----------------------
# Helpers
# -----------------------


def atomic(key: str = "read") -> Callable:
    """
    Decorator to wrap methods that need to talk to an LDAP server.

    Args:
        key: Either "read" or "write". Determines which LDAP server to use.

    Returns:
        A decorator that manages LDAP connection context for the wrapped method.

    """

    def real_decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(self, *args, **kwargs) -> Any:
            if self.has_connection():
                # Nested call: reuse the connection of the outer one
                return func(self, *args, **kwargs)
            self.connect(key)
            try:
                retval = func(self, *args, **kwargs)
            finally:
                self.disconnect()
            return retval

        return wrapper

    return real_decorator


def to_bytes(value: Value) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def normalize_filter(searchfilter: str) -> str:
    """
    Remove newlines (and the indentation after them) from ``searchfilter`` and
    check that what is left is a valid RFC4515 filter.

    Raises:
        ValueError: the filter does not parse

    """
    searchfilter = FILTER_NEWLINE_RE.sub("", searchfilter).strip()
    try:
        Filter.parse(searchfilter)
    except Exception as e:  # noqa: BLE001
        # ldap_filter raises its own parser errors
        msg = f"Invalid LDAP filter: {searchfilter!r}"
        raise ValueError(msg) from e
    return searchfilter


def search_attributes(attributes: list[str] | None) -> list[str] | None:
    """
    Turn the requested attribute list into a python-ldap ``attrlist``.

    ``None`` and an empty list mean every user attribute.  ``0.0`` also means
    every user attribute, and overrides everything else in the list.  ``+``
    (operational attributes) and ``1.1`` (no attributes) are passed to the
    server as they are.
    """
    if not attributes or ALL_USER_ATTRIBUTES in attributes:
        return None
    return list(attributes)


def add_modlist(record: Entry | AddChange) -> AddModlist:
    return [
        (name, [to_bytes(value) for value in values])
        for name, values in record.attributes
    ]


def modify_modlist(record: ModifyChange) -> ModifyModlist:
    """
    Build a ``modify_s`` modlist from ``record``, keeping the order of its
    modifications.

    A modification without values becomes ``None``, so that ``delete: attr``
    with no values removes the whole attribute.
    """
    return [
        (
            MOD_OPS[modification.operation],
            modification.attribute,
            [to_bytes(value) for value in modification.values]
            if modification.values
            else None,
        )
        for modification in record.modifications
    ]


# -----------------------
# Client
# -----------------------


class DirectoryClient:
    """
    Client for one of the directory servers in ``settings.LDAP_SERVERS``.

    ``settings.LDAP_SERVERS[server]`` must have a ``read`` and a ``write``
    configuration, each of them a dictionary with at least a ``url``, and may
    have a ``basedn`` used when a search is not given one.

    This class is thread-safe -- it will use a different LDAP connection for
    each thread.

    Args:
        server: the key of the server in ``settings.LDAP_SERVERS``

    Raises:
        ImproperlyConfigured: the server is not configured

    """

    def __init__(self, server: str = "default") -> None:
        self.logger = logger
        self.server = server
        try:
            self.config: dict[str, Any] = settings.LDAP_SERVERS[server]
        except AttributeError as e:
            msg = "settings.LDAP_SERVERS does not exist!"
            raise ImproperlyConfigured(msg) from e
        except KeyError as e:
            msg = f"settings.LDAP_SERVERS has no key '{server}'"
            raise ImproperlyConfigured(msg) from e
        for key in ("read", "write"):
            if key not in self.config or "url" not in self.config[key]:
                msg = f"settings.LDAP_SERVERS['{server}'] has no '{key}' url"
                raise ImproperlyConfigured(msg)
        self.basedn: str | None = self.config.get("basedn")
        # keys in this dictionary get manipulated by .connect() and .disconnect()
        self._ldap_objects: dict[threading.Thread, ldap.ldapobject.LDAPObject] = {}

    # Connections

    def has_connection(self) -> bool:
        return threading.current_thread() in self._ldap_objects

    @property
    def connection(self) -> ldap.ldapobject.LDAPObject:
        return self._ldap_objects[threading.current_thread()]

    def connect(self, key: str) -> None:
        """Open the per-thread connection.  Used by the @atomic decorator."""
        self._ldap_objects[threading.current_thread()] = self._connect(key)

    def disconnect(self) -> None:
        """Close the current thread's connection."""
        try:
            self.connection.unbind_s()
        finally:
            del self._ldap_objects[threading.current_thread()]

    def _check_file(self, path: str, label: str) -> None:
        if not Path(path).exists():
            msg = f"{label} file does not exist: {path}"
            raise OSError(msg)
        if not Path(path).is_file():
            msg = f"{label} file is not a file: {path}"
            raise OSError(msg)

    def _connect(self, key: str) -> ldap.ldapobject.LDAPObject:  # noqa: PLR0912
        """
        Create and bind a new LDAP connection.

        Args:
            key: ``read`` or ``write``

        Raises:
            ImproperlyConfigured: ``tls_verify`` or ``auth_method`` is invalid
            OSError: a configured certificate or key file is missing

        Returns:
            A bound LDAPObject.

        """
        config = self.config[key]
        ldap_object = ldap.initialize(config["url"])
        if config.get("follow_referrals", False):
            ldap_object.set_option(ldap.OPT_REFERRALS, 1)
        else:
            ldap_object.set_option(ldap.OPT_REFERRALS, 0)
        timeout = config.get("timeout", 15.0)
        ldap_object.set_option(ldap.OPT_NETWORK_TIMEOUT, float(timeout))
        sizelimit = config.get("sizelimit", None)
        if sizelimit:
            ldap_object.set_option(ldap.OPT_SIZELIMIT, int(sizelimit))
        tls_verify = config.get("tls_verify", "never")
        if tls_verify == "never":
            ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_NEVER)
        elif tls_verify == "always":
            ldap_object.set_option(ldap.OPT_X_TLS_REQUIRE_CERT, ldap.OPT_X_TLS_DEMAND)
        else:
            msg = f"Invalid tls_verify value: {tls_verify}"
            raise ImproperlyConfigured(msg)
        if tls_ca_certfile := config.get("tls_ca_certfile", None):
            self._check_file(tls_ca_certfile, "CA Certificate")
            ldap_object.set_option(ldap.OPT_X_TLS_CACERTFILE, tls_ca_certfile)
        if tls_certfile := config.get("tls_certfile", None):
            self._check_file(tls_certfile, "TLS Certificate")
            ldap_object.set_option(ldap.OPT_X_TLS_CERTFILE, tls_certfile)
        if tls_keyfile := config.get("tls_keyfile", None):
            self._check_file(tls_keyfile, "TLS Key")
            ldap_object.set_option(ldap.OPT_X_TLS_KEYFILE, tls_keyfile)
        ldap_object.set_option(ldap.OPT_X_TLS_NEWCTX, 0)
        if config.get("use_starttls", True):
            ldap_object.start_tls_s()
        auth_method = config.get("auth_method", "simple")
        if auth_method == "simple":
            ldap_object.simple_bind_s(config.get("user", ""), config.get("password", ""))
        elif auth_method == "gssapi":
            ldap_object.sasl_interactive_bind_s("", sasl.gssapi())
        else:
            msg = f"Invalid auth_method value: {auth_method}"
            raise ImproperlyConfigured(msg)
        self.logger.debug(
            "ldapion.directory.connected server=%s key=%s url=%s",
            self.server,
            key,
            config["url"],
        )
        return ldap_object

    # Reads

    def _results(self, msgid: int, partial_ok: bool) -> tuple[list[LDAPData], list]:
        """
        Collect the entries of the search ``msgid``.

        Returns:
            The entries, and the server controls of the final result.

        """
        results: list[LDAPData] = []
        serverctrls: list = []
        try:
            _, rdata, _, serverctrls = self.connection.result3(msgid)
            for dn, attrs in rdata:
                # Referrals come back with no attribute dict; skip them
                if isinstance(attrs, dict):
                    results.append((dn, attrs))
        except ldap.SIZELIMIT_EXCEEDED:
            if not partial_ok:
                raise
            self.logger.info(
                "ldapion.directory.search.sizelimit_exceeded server=%s entries=%d",
                self.server,
                len(results),
            )
        return results, serverctrls or []

    def _get_pctrls(self, serverctrls: list) -> list:
        return [
            c
            for c in serverctrls
            if c.controlType == SimplePagedResultsControl.controlType
        ]

    @atomic(key="read")
    def search(  # noqa: PLR0913
        self,
        searchfilter: str = "(objectClass=*)",
        attributes: list[str] | None = None,
        basedn: str | None = None,
        scope: str = "sub",
        sizelimit: int = 0,
        pagesize: int | None = None,
    ) -> list[Entry]:
        """
        Search the directory.

        Keyword Args:
            searchfilter: an RFC4515 filter; newlines and the indentation
                following them are removed first
            attributes: the attributes to return; see
                :py:func:`search_attributes`
            basedn: where to search from; defaults to the configured ``basedn``
            scope: one of ``base``, ``one``, ``sub`` or ``subordinate``
            sizelimit: return at most this many entries (0: no limit)
            pagesize: fetch entries in pages of this size (RFC2696); 0 turns
                paging off.  Defaults to ``LDAPION_DEFAULT_PAGE_SIZE``.

        Raises:
            ValueError: the filter, scope or basedn is invalid
            ldap.LDAPError: the server refused the search

        Returns:
            The matching entries, in the order the server sent them.

        """
        if basedn is None:
            basedn = self.basedn
        if not basedn:
            msg = "basedn is required either as a parameter or in settings.LDAP_SERVERS"
            raise ValueError(msg)
        try:
            ldap_scope = SCOPES[scope.lower()]
        except KeyError as e:
            msg = f"Invalid search scope {scope!r}; expected one of {', '.join(SCOPES)}"
            raise ValueError(msg) from e
        if pagesize is None:
            pagesize = get_setting("DEFAULT_PAGE_SIZE")
        searchfilter = normalize_filter(searchfilter)
        attrlist = search_attributes(attributes)
        # With a size limit or paging, hitting the size limit is not an error
        partial_ok = bool(sizelimit) or bool(pagesize)

        controls = []
        if pagesize:
            controls = [SimplePagedResultsControl(True, size=pagesize, cookie="")]  # noqa: FBT003
        results: list[LDAPData] = []
        while True:
            msgid = self.connection.search_ext(
                basedn,
                ldap_scope,
                searchfilter,
                attrlist,
                serverctrls=controls or None,
                sizelimit=sizelimit,
            )
            page, serverctrls = self._results(msgid, partial_ok)
            results.extend(page)
            if not controls:
                break
            paged_controls = self._get_pctrls(serverctrls)
            if not paged_controls or not paged_controls[0].cookie:
                break
            controls[0].cookie = paged_controls[0].cookie
        self.logger.debug(
            "ldapion.directory.search server=%s basedn=%s filter=%s entries=%d",
            self.server,
            basedn,
            searchfilter,
            len(results),
        )
        return [Entry.from_mapping(dn, attrs) for dn, attrs in results]

    # Writes

    @atomic(key="write")
    def add(self, record: Entry | AddChange) -> None:
        """
        Create the entry described by ``record``.

        Raises:
            ldap.LDAPError: the server refused the add

        """
        self.connection.add_s(record.dn, add_modlist(record))

    @atomic(key="write")
    def delete(self, dn: str) -> None:
        self.connection.delete_s(dn)

    @atomic(key="write")
    def modify(self, record: ModifyChange) -> None:
        """
        Apply the modifications of ``record``, in order, in a single
        ``modify_s`` call.
        """
        self.connection.modify_s(record.dn, modify_modlist(record))

    @atomic(key="write")
    def rename(self, record: ModifyDnChange) -> None:
        self.connection.rename_s(
            record.dn,
            record.new_rdn,
            record.new_superior,
            1 if record.delete_old_rdn else 0,
        )

    @atomic(key="write")
    def apply(self, record: ChangeRecord) -> None:
        """
        Apply any change record.

        Raises:
            DirectoryError: ``record`` is not a change record
            ldap.LDAPError: the server refused the change

        """
        if isinstance(record, AddChange):
            self.add(record)
        elif isinstance(record, DeleteChange):
            self.delete(record.dn)
        elif isinstance(record, ModifyChange):
            self.modify(record)
        elif isinstance(record, ModifyDnChange):
            self.rename(record)
        else:
            msg = f"{type(record).__name__} is not a change record"
            raise DirectoryError(msg)
