# type: ignore
"""
Tests for the Ion document decoder and encoder.
"""

import io
import unittest

from amazon.ion import simpleion
from amazon.ion.equivalence import ion_equals

from ldapion.documents import (
    DocumentDecoder,
    DocumentEncoder,
    DocumentField,
    decode_document,
    encode_document,
    read_documents,
)
from ldapion.exceptions import DocumentShapeError
from ldapion.ion import loads
from ldapion.records import (
    AddChange,
    DeleteChange,
    Entry,
    Modification,
    ModifyChange,
    ModifyDnChange,
    ModOperation,
    RecordError,
)

BOB = "cn=bob@orga.com,ou=diffusion_list,dc=orga,dc=com"
TRISS = "cn=triss@orga.com,ou=diffusion_list,dc=orga,dc=com"

MODIFY = ModifyChange(
    TRISS,
    (
        Modification(ModOperation.DELETE, "description", ("Some description 3",)),
        Modification(ModOperation.ADD, "description", ("Some description 4",)),
        Modification(ModOperation.REPLACE, "someOtherAttribute", ("Loves herself more",)),
        Modification(ModOperation.INCREMENT, "uidNumber", ("-4",)),
    ),
)


def decode(text):
    return list(DocumentDecoder(io.StringIO(text)))


def decode_one(text):
    (value,) = loads(text)
    return decode_document(value)


class TestDocumentEncoder(unittest.TestCase):
    """Test writing records as Ion documents."""

    def assertIon(self, text, expected):
        self.assertNotIn("\n", text)
        self.assertTrue(
            ion_equals(simpleion.loads(text), simpleion.loads(expected)),
            f"{text!r} is not {expected!r}",
        )

    def test_entry(self):
        entry = Entry(
            BOB,
            (
                ("description", ("Some description", "Some other description")),
                ("someOtherAttribute", ("perhaps", "perhapsAgain")),
            ),
        )
        self.assertIon(
            encode_document(entry),
            f'{{dn:"{BOB}",attributes:{{description:["Some description",'
            '"Some other description"],someOtherAttribute:["perhaps","perhapsAgain"]}}',
        )

    def test_modify_keeps_operation_order(self):
        self.assertIon(
            encode_document(MODIFY),
            f'{{dn:"{TRISS}",changeType:"modify",modifications:['
            '{operation:"DELETE",attribute:"description",values:["Some description 3"]},'
            '{operation:"ADD",attribute:"description",values:["Some description 4"]},'
            '{operation:"REPLACE",attribute:"someOtherAttribute",values:["Loves herself more"]},'
            '{operation:"INCREMENT",attribute:"uidNumber",values:["-4"]}]}',
        )

    def test_field_order(self):
        text = encode_document(AddChange("cn=bob", (("cn", ("bob",)),)))
        self.assertLess(text.index("dn"), text.index("changeType"))
        self.assertLess(text.index("changeType"), text.index("attributes"))

    def test_delete(self):
        self.assertIon(
            encode_document(DeleteChange(TRISS)),
            f'{{dn:"{TRISS}",changeType:"delete"}}',
        )

    def test_add(self):
        self.assertIon(
            encode_document(AddChange("cn=bob", (("cn", ("bob",)),))),
            '{dn:"cn=bob",changeType:"add",attributes:{cn:["bob"]}}',
        )

    def test_moddn(self):
        """Test that newsuperior is only written when there is one."""
        self.assertIon(
            encode_document(
                ModifyDnChange(TRISS, "cn=triss@orga.com", False, "ou=expeople,dc=example,dc=com")
            ),
            f'{{dn:"{TRISS}",changeType:"moddn",newDn:{{newrdn:"cn=triss@orga.com",'
            'deleteoldrdn:false,newsuperior:"ou=expeople,dc=example,dc=com"}}',
        )
        self.assertIon(
            encode_document(ModifyDnChange(TRISS, "cn=triss@orga.com", True)),
            f'{{dn:"{TRISS}",changeType:"moddn",newDn:{{newrdn:"cn=triss@orga.com",'
            "deleteoldrdn:true}}",
        )

    def test_blank_values_collapse_to_null(self):
        """Test that an attribute whose values are all blank is written as null."""
        self.assertIon(
            encode_document(Entry("cn=bob", (("mail", ("",)), ("cn", ("bob",))))),
            '{dn:"cn=bob",attributes:{mail:null,cn:["bob"]}}',
        )
        self.assertIon(
            encode_document(Entry("cn=bob", (("mail", ("", "  ")),))),
            '{dn:"cn=bob",attributes:{mail:null}}',
        )

    def test_mixed_blank_values_pass_through(self):
        self.assertIon(
            encode_document(Entry("cn=bob", (("mail", ("", "bob@example.com")),))),
            '{dn:"cn=bob",attributes:{mail:["","bob@example.com"]}}',
        )

    def test_binary_values(self):
        self.assertIon(
            encode_document(Entry("cn=bob", (("jpegPhoto", (b"\xc3\x9a",)),))),
            '{dn:"cn=bob",attributes:{jpegPhoto:[binary::"w5o="]}}',
        )

    def test_special_characters(self):
        entry = Entry('cn=a"b\\c', (("description", ("line one\nline two", "tab\there")),))
        text = encode_document(entry)
        self.assertNotIn("\n", text)
        self.assertEqual(decode(text), [entry])

    def test_one_record_per_line(self):
        stream = io.StringIO()
        encoder = DocumentEncoder(stream)
        encoder.write(DeleteChange("cn=one"))
        encoder.write(DeleteChange("cn=two"))
        lines = stream.getvalue().splitlines(keepends=True)
        self.assertEqual(len(lines), 2)
        self.assertTrue(all(line.endswith("\n") for line in lines))
        self.assertEqual(decode(stream.getvalue()), [DeleteChange("cn=one"), DeleteChange("cn=two")])


class TestDocumentDecoder(unittest.TestCase):
    """Test reading Ion documents into records."""

    def test_round_trip(self):
        """Test that every kind of record survives encoding and decoding."""
        records = [
            Entry(BOB, (("description", ("a", "b")), ("jpegPhoto", (b"\xff\x00",)))),
            Entry("cn=empty", ()),
            AddChange("cn=bob", (("cn", ("bob",)), ("comment", (b"\xc3",)))),
            DeleteChange(TRISS),
            MODIFY,
            ModifyChange("cn=bob", (Modification(ModOperation.DELETE, "mail"),)),
            ModifyDnChange(TRISS, "cn=x", True),
            ModifyDnChange(TRISS, "cn=x", False, "ou=people"),
        ]
        stream = io.StringIO()
        encoder = DocumentEncoder(stream)
        for record in records:
            encoder.write(record)
        self.assertEqual(decode(stream.getvalue()), records)

    def test_modify_ordering(self):
        records = decode(encode_document(MODIFY))
        self.assertEqual(
            [m.operation for m in records[0].modifications],
            [
                ModOperation.DELETE,
                ModOperation.ADD,
                ModOperation.REPLACE,
                ModOperation.INCREMENT,
            ],
        )

    def test_null_means_empty_string(self):
        """Test the reverse of the blank-value collapse."""
        record = decode_one('{dn:"cn=bob",attributes:{mail:null,sn:[],cn:[null,"bob"]}}')
        self.assertEqual(
            record.attributes,
            (("mail", ("",)), ("sn", ("",)), ("cn", ("", "bob"))),
        )

    def test_field_order_does_not_matter(self):
        record = decode_one('{newDn:{deleteoldrdn:true,newrdn:"cn=x"},changeType:"moddn",dn:"cn=y"}')
        self.assertEqual(record, ModifyDnChange("cn=y", "cn=x", True))

    def test_changetype_is_case_insensitive(self):
        self.assertEqual(decode_one('{dn:"cn=y",changeType:"DELETE"}'), DeleteChange("cn=y"))
        self.assertEqual(
            decode_one('{dn:"cn=y",changeType:"modrdn",newDn:{newrdn:"cn=x",deleteoldrdn:false}}'),
            ModifyDnChange("cn=y", "cn=x", False),
        )

    def test_symbols_are_text(self):
        record = decode_one("{dn:'cn=y',changeType:delete}")
        self.assertEqual(record, DeleteChange("cn=y"))

    def test_blob_values(self):
        record = decode_one('{dn:"cn=y",attributes:{jpegPhoto:[{{w5o=}}],cn:[{{"bob"}}]}}')
        self.assertEqual(record.get("jpegPhoto"), (b"\xc3\x9a",))
        self.assertEqual(record.get("cn"), ("bob",))

    def test_unknown_fields_are_skipped(self):
        with self.assertLogs("ldapion.documents", level="WARNING") as cm:
            record = decode_one(
                '{dn:"cn=y",future:1,changeType:"modify",modifications:'
                '[{operation:"ADD",attribute:"cn",values:["x"],extra:true}],attributes:{cn:["z"]}}'
            )
        self.assertEqual(
            record,
            ModifyChange("cn=y", (Modification(ModOperation.ADD, "cn", ("x",)),)),
        )
        output = "\n".join(cm.output)
        self.assertIn("future", output)
        self.assertIn("extra", output)
        self.assertIn("attributes", output)

    def test_shape_errors(self):
        for text in (
            "[1, 2]",
            '{attributes:{cn:["x"]}}',
            '{dn:1,attributes:{cn:["x"]}}',
            '{dn:"cn=y"}',
            '{dn:"cn=y",changeType:"add"}',
            '{dn:"cn=y",changeType:"modify"}',
            '{dn:"cn=y",changeType:"moddn"}',
            '{dn:"cn=y",changeType:"frobnicate"}',
            '{dn:"cn=y",attributes:["x"]}',
            '{dn:"cn=y",attributes:{cn:"x"}}',
            '{dn:"cn=y",attributes:{cn:[1]}}',
            '{dn:"cn=y",attributes:{cn:{a:1}}}',
            '{dn:"cn=y",changeType:"modify",modifications:{}}',
            '{dn:"cn=y",changeType:"modify",modifications:[{operation:"RENAME",attribute:"cn"}]}',
            '{dn:"cn=y",changeType:"modify",modifications:[{operation:"ADD"}]}',
            '{dn:"cn=y",changeType:"moddn",newDn:{newrdn:"cn=x",deleteoldrdn:"yes"}}',
            '{dn:"cn=y",changeType:"moddn",newDn:{deleteoldrdn:true}}',
            '{dn:"cn=y",dn:"cn=z",changeType:"delete"}',
        ):
            with self.subTest(text=text), self.assertRaises(DocumentShapeError):
                decode_one(text)

    def test_bad_records_do_not_stop_decoding(self):
        records = decode(
            '{dn:"cn=one",changeType:"delete"}\n'
            '{dn:"cn=two",changeType:"modify"}\n'
            '{dn:"cn=three",changeType:"delete"}\n'
        )
        self.assertEqual(len(records), 3)
        self.assertEqual(records[0], DeleteChange("cn=one"))
        self.assertIsInstance(records[1], RecordError)
        self.assertEqual(records[1].line, 2)
        self.assertEqual(records[1].raw, ('{dn:"cn=two",changeType:"modify"}',))
        self.assertEqual(records[2], DeleteChange("cn=three"))

    def test_syntax_errors_resync(self):
        records = decode(
            '{dn:"cn=one",changeType:"delete"}\n'
            '{dn:"cn=two",changeType:"delete"\n'
            '{dn:"cn=three",changeType:"delete"}\n'
        )
        self.assertEqual(len(records), 3)
        self.assertIsInstance(records[1], RecordError)
        self.assertEqual(records[1].line, 2)
        self.assertEqual(records[2], DeleteChange("cn=three"))

    def test_syntax_error_on_the_same_line(self):
        """Test that a bad struct does not take the next one on its line with it."""
        records = decode(
            '{dn:"cn=a",attributes:{cn:["a" "b"]}} {dn:"cn=b",attributes:{cn:["x"]}}'
        )
        self.assertEqual(len(records), 2)
        self.assertIsInstance(records[0], RecordError)
        self.assertEqual(records[0].line, 1)
        self.assertEqual(records[0].raw, ('{dn:"cn=a",attributes:{cn:["a" "b"]}}',))
        self.assertEqual(records[1], Entry("cn=b", (("cn", ("x",)),)))

    def test_syntax_error_inside_multiline_struct(self):
        records = decode(
            "{\n"
            '  dn: "cn=one",\n'
            '  attributes: {cn: ["one" "two"]}\n'
            "}\n"
            '{dn:"cn=two",changeType:"delete"}\n'
        )
        self.assertEqual(len(records), 2)
        self.assertIsInstance(records[0], RecordError)
        self.assertEqual(records[0].line, 1)
        self.assertEqual(len(records[0].raw), 4)
        self.assertEqual(records[1], DeleteChange("cn=two"))

    def test_braces_in_strings_and_comments(self):
        records = decode(
            "$ion_1_0\n"
            "// a comment with a } brace\n"
            "{\n"
            '  dn: "cn=one",\n'
            '  changeType: "delete" /* } */\n'
            "}\n"
            "{dn:'cn={x}',changeType:'''del''' '''ete'''}\n"
            '{dn:"cn=y",attributes:{jpegPhoto:[{{w5o=}}],cn:["}"]}}\n'
        )
        self.assertEqual(
            records,
            [
                DeleteChange("cn=one"),
                DeleteChange("cn={x}"),
                Entry("cn=y", (("jpegPhoto", (b"\xc3\x9a",)), ("cn", ("}",)))),
            ],
        )

    def test_records_are_read_lazily(self):
        """Test that a record is yielded before the lines after it are read."""
        consumed = []

        def lines():
            for line in (
                '{dn:"cn=one",changeType:"delete"}\n',
                '{dn:"cn=two",changeType:"delete"}\n',
            ):
                consumed.append(line)
                yield line

        decoder = DocumentDecoder(lines())
        self.assertEqual(next(decoder), DeleteChange("cn=one"))
        self.assertEqual(len(consumed), 1)
        self.assertEqual(list(decoder), [DeleteChange("cn=two")])
        self.assertEqual(len(consumed), 2)

    def test_changetype_attribute_is_rejected(self):
        records = decode('{dn:"cn=y",attributes:{changetype:["delete"]}}')
        self.assertEqual(len(records), 1)
        self.assertIsInstance(records[0], RecordError)
        self.assertIn("changetype", records[0].message)

    def test_invalid_base64(self):
        with self.assertRaises(DocumentShapeError):
            decode_one('{dn:"cn=y",attributes:{jpegPhoto:[binary::"not base64!"]}}')

    def test_other_annotations_are_ignored(self):
        record = decode_one('{dn:"cn=y",attributes:{cn:[label::"bob"]}}')
        self.assertEqual(record.get("cn"), ("bob",))

    def test_binary_stream(self):
        records = list(read_documents(io.BytesIO('{dn:"cn=Zoë",changeType:"delete"}'.encode())))
        self.assertEqual(records, [DeleteChange("cn=Zoë")])

    def test_field_lookup(self):
        self.assertIs(DocumentField.lookup("newDn"), DocumentField.NEW_DN)
        self.assertIsNone(DocumentField.lookup("newdn"))
