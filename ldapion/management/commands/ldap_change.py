from pathlib import Path

from django.core.management.base import BaseCommand, CommandError

from ldapion.directory import DirectoryClient
from ldapion.operations import OPERATIONS
from ldapion.storage import FileSystemStorage


class Command(BaseCommand):
    help = "Add, delete or modify directory entries from LDIF files."

    def add_arguments(self, parser):
        parser.add_argument("inputs", nargs="+", help="LDIF files to apply")
        parser.add_argument(
            "--operation",
            choices=list(OPERATIONS),
            required=True,
            help=(
                "add: create the entries; delete: delete the dn of every record; "
                "modify: apply the change records"
            ),
        )
        parser.add_argument(
            "--server",
            default="default",
            help="Key of the server in settings.LDAP_SERVERS",
        )

    def handle(self, *args, **options):  # noqa: ARG002
        operation = OPERATIONS[options["operation"]](
            DirectoryClient(options["server"]), FileSystemStorage()
        )
        report = operation.run([Path(path).resolve() for path in options["inputs"]])
        name = operation.name
        self.stdout.write(
            f"{name}.requested={report.requested} {name}.done={report.done} "
            f"{name}.mean.time={report.mean_time:.3f}s"
        )
        if report.requested and not report.done:
            msg = f"None of the {report.requested} records could be applied."
            raise CommandError(msg)
