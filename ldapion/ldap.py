# This file is here so that we can patch the ldap module in our tests.
# python-ldap-faker patches ``<module>.ldap.initialize``, so the directory
# client goes through ``ldapion.ldap`` instead of importing python-ldap directly.
import ldap
from ldap import *  # noqa: F403

__version__ = ldap.__version__
