"""
Settings lookup for ldapion.

Everything is read from Django settings.  ``LDAP_SERVERS`` holds the
connection configuration of the directory client; the ``LDAPION_*`` settings
tune the codecs and the storage layer.  When no Django settings have been
configured the defaults below apply, so the transcoding core can be used
without a Django project.
"""

from typing import Any

from django.conf import settings

#: Default values for the ``LDAPION_*`` settings.
DEFAULTS: dict[str, Any] = {
    # Fold LDIF lines longer than this; 0 disables folding.
    "LDIF_WRAP_COLUMNS": 76,
    # Page size for directory searches; 0 means "do not page".
    "DEFAULT_PAGE_SIZE": 0,
    # Directory used by FileSystemStorage; None means a temporary directory.
    "STORAGE_DIR": None,
}


def get_setting(name: str, default: Any = None) -> Any:
    """
    Get an ``LDAPION_`` setting from Django settings with fallback.

    Args:
        name: Name of the setting (without the ``LDAPION_`` prefix)
        default: Value to use if the setting is not found.  If not given,
            the value from :py:data:`DEFAULTS` is used.

    Returns:
        The configured value, or the default.

    """
    if default is None:
        default = DEFAULTS.get(name)
    if not settings.configured:
        return default
    return getattr(settings, f"LDAPION_{name}", default)
