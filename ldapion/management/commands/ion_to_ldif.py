from ldapion.pipeline import ion_to_ldif

from ._transcode import TranscodeCommand


class Command(TranscodeCommand):
    help = "Convert Ion documents to LDIF files, one output file per input file."

    convert = staticmethod(ion_to_ldif)
