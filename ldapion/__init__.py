"""
LDAP directory management and LDIF <-> Ion transcoding.
"""

__version__ = "1.0.0"
