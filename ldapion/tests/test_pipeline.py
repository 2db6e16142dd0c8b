# type: ignore
"""
Tests for the transcoding pipeline and the file system storage.
"""

import io
import tempfile
import unittest
from pathlib import Path

from amazon.ion.core import IonType

from ldapion.documents import read_documents
from ldapion.exceptions import TranscodeError
from ldapion.ion import ion_type, loads, struct_fields
from ldapion.pipeline import (
    ION_TO_LDIF,
    LDIF_TO_ION,
    TranscodeResult,
    UnitResult,
    ion_to_ldif,
    ldif_to_ion,
)
from ldapion.records import DeleteChange, Entry
from ldapion.storage import FileSystemStorage

SAMPLE_LDIF = """\
# simple entry
dn: cn=bob@orga.com,ou=diffusion_list,dc=orga,dc=com
description: Some description
someOtherAttribute: perhaps
description: Some other description
someOtherAttribute: perhapsAgain

# modify changeRecord
dn: cn=triss@orga.com,ou=diffusion_list,dc=orga,dc=com
changetype: modify
delete: description
description: Some description 3
-
add: description
description: Some description 4
-
replace: someOtherAttribute
someOtherAttribute: Loves herself more
-
increment: uidNumber
uidNumber: -4
-

# delete changeRecord
dn: cn=triss@orga.com,ou=diffusion_list,dc=orga,dc=com
changetype: delete

# moddn and modrdn are the same thing
dn: cn=triss@orga.com,ou=diffusion_list,dc=orga,dc=com
changetype: modrdn
newrdn: cn=triss@orga.com
deleteoldrdn: 0
newsuperior: ou=expeople,dc=example,dc=com

# moddn without new superior
dn: cn=triss@orga.com,ou=diffusion_list,dc=orga,dc=com
changetype: moddn
newrdn: cn=triss@orga.com
deleteoldrdn: 1
"""

SAMPLE_ION = (
    '{dn:"cn=bob@orga.com,ou=diffusion_list,dc=orga,dc=com",attributes:{description:'
    '["Some description","Some other description"],someOtherAttribute:["perhaps","perhapsAgain"]}}\n'
    '{dn:"cn=triss@orga.com,ou=diffusion_list,dc=orga,dc=com",changeType:"modify",modifications:['
    '{operation:"DELETE",attribute:"description",values:["Some description 3"]},'
    '{operation:"ADD",attribute:"description",values:["Some description 4"]},'
    '{operation:"REPLACE",attribute:"someOtherAttribute",values:["Loves herself more"]},'
    '{operation:"INCREMENT",attribute:"uidNumber",values:["-4"]}]}\n'
    '{dn:"cn=triss@orga.com,ou=diffusion_list,dc=orga,dc=com",changeType:"delete"}\n'
    '{dn:"cn=triss@orga.com,ou=diffusion_list,dc=orga,dc=com",changeType:"moddn",newDn:'
    '{newrdn:"cn=triss@orga.com",deleteoldrdn:false,newsuperior:"ou=expeople,dc=example,dc=com"}}\n'
    '{dn:"cn=triss@orga.com,ou=diffusion_list,dc=orga,dc=com",changeType:"moddn",newDn:'
    '{newrdn:"cn=triss@orga.com",deleteoldrdn:true}}\n'
)


class MemoryStorage:
    """A storage that keeps its units in a dictionary."""

    class Output(io.BytesIO):
        def __init__(self, storage, handle):
            super().__init__()
            self.storage = storage
            self.handle = handle

        def close(self):
            self.storage.units[self.handle] = self.getvalue()
            super().close()

    def __init__(self, units=None):
        self.units = dict(units or {})
        self.created = 0

    def open_for_read(self, ref):
        if ref not in self.units:
            raise FileNotFoundError(ref)
        return io.BytesIO(self.units[ref])

    def create_for_write(self, suffix):
        self.created += 1
        handle = f"out-{self.created}{suffix}"
        return self.Output(self, handle), handle

    def text(self, handle):
        return self.units[handle].decode("utf-8")

    def records(self, handle):
        return list(read_documents(io.BytesIO(self.units[handle])))


class TestLdifToIon(unittest.TestCase):
    """Test the LDIF to Ion direction."""

    def test_sample(self):
        storage = MemoryStorage({"in.ldif": SAMPLE_LDIF.encode()})
        result = ldif_to_ion(["in.ldif"], storage)
        self.assertEqual(result.outputs, ["out-1.ion"])
        self.assertEqual(result.failed, [])
        self.assertEqual(result.found, 5)
        self.assertEqual(result.translated, 5)
        self.assertEqual(
            storage.records("out-1.ion"), list(read_documents(io.StringIO(SAMPLE_ION)))
        )
        self.assertEqual(len(storage.text("out-1.ion").splitlines()), 5)

    def test_partial_failure(self):
        """Test that one bad block out of three is counted but not written."""
        storage = MemoryStorage(
            {
                "in.ldif": (
                    b"dn: cn=one\ncn: one\n\n"
                    b"dn: cn=two\nchangetype: frobnicate\n\n"
                    b"dn: cn=three\ncn: three\n"
                )
            }
        )
        with self.assertLogs("ldapion", level="WARNING") as cm:
            result = ldif_to_ion(["in.ldif"], storage)
        self.assertEqual(result.found, 3)
        self.assertEqual(result.translated, 2)
        self.assertEqual(
            storage.records(result.outputs[0]),
            [Entry("cn=one", (("cn", ("one",)),)), Entry("cn=three", (("cn", ("three",)),))],
        )
        self.assertIn("frobnicate", "\n".join(cm.output))

    def test_empty_unit_succeeds(self):
        """Test that an empty input gives an empty output, not a failure."""
        storage = MemoryStorage({"empty.ldif": b"", "comments.ldif": b"# nothing\n"})
        result = ldif_to_ion(["empty.ldif", "comments.ldif"], storage)
        self.assertEqual(len(result.outputs), 2)
        self.assertEqual(result.failed, [])
        self.assertEqual(result.found, 0)
        for handle in result.outputs:
            self.assertEqual(storage.text(handle), "")

    def test_failed_unit_is_skipped(self):
        """Test that a unit with no good record produces no output."""
        storage = MemoryStorage(
            {
                "bad.ldif": b"cn: no dn\n\ndn: cn=x\nchangetype: nope\n",
                "good.ldif": b"dn: cn=x\nchangetype: delete\n",
            }
        )
        result = ldif_to_ion(["bad.ldif", "good.ldif"], storage)
        self.assertEqual(result.failed, ["bad.ldif"])
        self.assertEqual(result.outputs, ["out-1.ion"])
        self.assertEqual(result.found, 3)
        self.assertEqual(result.translated, 1)
        self.assertEqual(storage.created, 1)

    def test_missing_unit_is_skipped(self):
        storage = MemoryStorage({"good.ldif": b"dn: cn=x\nchangetype: delete\n"})
        result = ldif_to_ion(["missing.ldif", "good.ldif"], storage)
        self.assertEqual(result.failed, ["missing.ldif"])
        self.assertEqual(len(result.outputs), 1)

    def test_nothing_translated_raises(self):
        storage = MemoryStorage({"bad.ldif": b"cn: no dn\n"})
        with self.assertRaises(TranscodeError) as cm:
            ldif_to_ion(["bad.ldif", "missing.ldif"], storage)
        self.assertEqual(str(cm.exception), "Not a single file has been translated.")

    def test_no_inputs(self):
        result = ldif_to_ion([], MemoryStorage())
        self.assertEqual(result, TranscodeResult())

    def test_run_does_not_raise(self):
        """Test that Transcoder.run reports failures instead of raising."""
        result = LDIF_TO_ION.run(["missing.ldif"], MemoryStorage())
        self.assertEqual(result.failed, ["missing.ldif"])
        self.assertEqual(result.outputs, [])

    def test_blank_value_collapse(self):
        storage = MemoryStorage({"in.ldif": b"dn: cn=bob\nmail:\ncn: bob\n"})
        result = ldif_to_ion(["in.ldif"], storage)
        (value,) = loads(storage.text(result.outputs[0]))
        attributes = dict(struct_fields(dict(struct_fields(value))["attributes"]))
        self.assertIs(ion_type(attributes["mail"]), IonType.NULL)
        self.assertEqual(
            storage.records(result.outputs[0]),
            [Entry("cn=bob", (("mail", ("",)), ("cn", ("bob",))))],
        )


class TestIonToLdif(unittest.TestCase):
    """Test the Ion to LDIF direction."""

    def test_sample(self):
        storage = MemoryStorage({"in.ion": SAMPLE_ION.encode()})
        result = ion_to_ldif(["in.ion"], storage)
        self.assertEqual(result.outputs, ["out-1.ldif"])
        self.assertEqual(result.translated, 5)
        ldif = storage.text("out-1.ldif")
        self.assertIn(
            "dn: cn=triss@orga.com,ou=diffusion_list,dc=orga,dc=com\n"
            "changetype: moddn\n"
            "newrdn: cn=triss@orga.com\n"
            "deleteoldrdn: 1\n"
            "\n",
            ldif,
        )
        self.assertTrue(ldif.endswith("deleteoldrdn: 1\n\n"))

    def test_both_directions(self):
        """Test that LDIF -> Ion -> LDIF -> Ion gives the same Ion twice."""
        storage = MemoryStorage({"in.ldif": SAMPLE_LDIF.encode()})
        ion = ldif_to_ion(["in.ldif"], storage).outputs
        ldif = ion_to_ldif(ion, storage).outputs
        again = ldif_to_ion(ldif, storage).outputs
        self.assertEqual(storage.text(ion[0]), storage.text(again[0]))

    def test_binary_fidelity(self):
        storage = MemoryStorage(
            {"in.ldif": b"dn: cn=bob\ndescription:: w8M=\ncomment:: YQBi\njpegPhoto:: w5o=\n"}
        )
        ion = ldif_to_ion(["in.ldif"], storage).outputs
        ldif = ion_to_ldif(ion, storage).outputs
        self.assertEqual(
            storage.text(ldif[0]),
            "dn: cn=bob\ndescription:: w8M=\ncomment:: YQBi\njpegPhoto:: w5o=\n\n",
        )

    def test_syntax_error_counts_as_found(self):
        storage = MemoryStorage(
            {"in.ion": b'{dn:"cn=a",changeType:"delete"}\n{dn:"cn=b",\n{dn:"cn=c",changeType:"delete"}\n'}
        )
        result = ION_TO_LDIF.run(["in.ion"], storage)
        self.assertEqual(result.found, 3)
        self.assertEqual(result.translated, 2)

    def test_invalid_utf8_fails_the_unit(self):
        storage = MemoryStorage({"in.ion": b"\xff\xfe"})
        result = ION_TO_LDIF.run(["in.ion"], storage)
        self.assertEqual(result.failed, ["in.ion"])


class TestUnitResult(unittest.TestCase):
    def test_failed(self):
        self.assertFalse(UnitResult().failed)
        self.assertTrue(UnitResult(found=2).failed)
        self.assertFalse(UnitResult(found=2, translated=1).failed)


class TestFileSystemStorage(unittest.TestCase):
    """Test the directory backed storage."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def test_relative_and_absolute_refs(self):
        (self.root / "in.ldif").write_bytes(b"dn: cn=x\nchangetype: delete\n")
        storage = FileSystemStorage(self.root)
        with storage.open_for_read("in.ldif") as stream:
            self.assertEqual(stream.read(), b"dn: cn=x\nchangetype: delete\n")
        with storage.open_for_read(self.root / "in.ldif") as stream:
            self.assertTrue(stream.read().startswith(b"dn:"))

    def test_create_for_write(self):
        storage = FileSystemStorage(self.root / "out")
        stream, path = storage.create_for_write(".ion")
        with stream:
            stream.write(b"{}")
        self.assertEqual(path.suffix, ".ion")
        self.assertEqual(path.parent, self.root / "out")
        self.assertEqual(path.read_bytes(), b"{}")

    def test_default_root_is_a_temporary_directory(self):
        storage = FileSystemStorage()
        self.assertTrue(storage.root.is_dir())

    def test_pipeline_on_files(self):
        (self.root / "in.ldif").write_text(
            "dn: cn=x\nchangetype: delete\n", encoding="utf-8"
        )
        result = ldif_to_ion(["in.ldif"], FileSystemStorage(self.root))
        with result.outputs[0].open(encoding="utf-8") as stream:
            self.assertEqual(list(read_documents(stream)), [DeleteChange("cn=x")])
