import django
from django.conf import settings

# The directory client tests patch LDAP_SERVERS per test case; this is just
# enough for django.setup() and for the management commands to be found.
if not settings.configured:
    settings.configure(
        INSTALLED_APPS=["ldapion"],
        LDAP_SERVERS={
            "default": {
                "basedn": "dc=example,dc=com",
                "read": {
                    "url": "ldap://localhost:389",
                    "user": "cn=admin,dc=example,dc=com",
                    "password": "admin",
                    "use_starttls": False,
                    "tls_verify": "never",
                },
                "write": {
                    "url": "ldap://localhost:389",
                    "user": "cn=admin,dc=example,dc=com",
                    "password": "admin",
                    "use_starttls": False,
                    "tls_verify": "never",
                },
            }
        },
    )
    django.setup()
