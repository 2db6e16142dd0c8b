from pathlib import Path

from django.core.management.base import BaseCommand, CommandError

from ldapion.exceptions import TranscodeError
from ldapion.pipeline import TranscodeResult
from ldapion.storage import FileSystemStorage


class TranscodeCommand(BaseCommand):
    """
    Shared body of ``ldif_to_ion`` and ``ion_to_ldif``.

    Subclasses set :py:attr:`convert` to one of the task level functions of
    :py:mod:`ldapion.pipeline`.
    """

    convert = None

    def add_arguments(self, parser):
        parser.add_argument("inputs", nargs="+", help="Files to convert")
        parser.add_argument(
            "--output-dir",
            dest="output_dir",
            default=None,
            help="Where to write the converted files.  Defaults to LDAPION_STORAGE_DIR.",
        )

    def handle(self, *args, **options):  # noqa: ARG002
        storage = FileSystemStorage(options["output_dir"])
        try:
            result: TranscodeResult = self.convert(
                [Path(path).resolve() for path in options["inputs"]], storage
            )
        except TranscodeError as e:
            raise CommandError(str(e)) from e
        for handle in result.outputs:
            self.stdout.write(str(handle))
        for ref in result.failed:
            self.stderr.write(f"failed: {ref}")
        self.stdout.write(
            f"entries.found={result.found} entries.translated={result.translated}"
        )
