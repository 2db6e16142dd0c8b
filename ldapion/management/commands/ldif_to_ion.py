from ldapion.pipeline import ldif_to_ion

from ._transcode import TranscodeCommand


class Command(TranscodeCommand):
    help = "Convert LDIF files to Ion documents, one output file per input file."

    convert = staticmethod(ldif_to_ion)
