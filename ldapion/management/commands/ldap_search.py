from django.core.management.base import BaseCommand, CommandError

from ldapion import ldap
from ldapion.directory import SCOPES, DirectoryClient
from ldapion.operations import Search
from ldapion.storage import FileSystemStorage


class Command(BaseCommand):
    help = "Search a directory server and write the matching entries to an LDIF file."

    def add_arguments(self, parser):
        parser.add_argument(
            "--server",
            default="default",
            help="Key of the server in settings.LDAP_SERVERS",
        )
        parser.add_argument("--basedn", default=None, help="Where to search from")
        parser.add_argument(
            "--filter",
            dest="searchfilter",
            default="(objectClass=*)",
            help="RFC4515 search filter",
        )
        parser.add_argument(
            "--attribute",
            dest="attributes",
            action="append",
            default=None,
            help=(
                "Attribute to return; repeat for more.  Special values: "
                "'+' (operational), '1.1' (none), '0.0' (all user attributes)"
            ),
        )
        parser.add_argument("--scope", choices=list(SCOPES), default="sub")
        parser.add_argument("--sizelimit", type=int, default=0)
        parser.add_argument("--pagesize", type=int, default=None)
        parser.add_argument("--output-dir", dest="output_dir", default=None)

    def handle(self, *args, **options):  # noqa: ARG002
        search = Search(
            DirectoryClient(options["server"]),
            FileSystemStorage(options["output_dir"]),
        )
        try:
            result = search.run(
                searchfilter=options["searchfilter"],
                attributes=options["attributes"],
                basedn=options["basedn"],
                scope=options["scope"],
                sizelimit=options["sizelimit"],
                pagesize=options["pagesize"],
            )
        except (ValueError, ldap.LDAPError, OSError) as e:
            raise CommandError(str(e)) from e
        self.stdout.write(str(result.handle))
        self.stdout.write(f"entries.found={result.found} search.time={result.elapsed:.3f}s")
