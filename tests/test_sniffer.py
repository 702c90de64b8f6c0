from __future__ import annotations

import unittest

import _support  # noqa: F401

from order_sheet.config import MB, Settings
from order_sheet.errors import LegacyFileTooLarge, UnclassifiableFormat
from order_sheet.sniffer import OLE2_MAGIC, FileFormat, classify, describe_signature, require_supported


class SnifferTests(unittest.TestCase):
    def test_zip_magic_wins_over_csv_extension(self):
        self.assertEqual(classify(b"PK\x03\x04rest-of-archive", "orders.csv"), FileFormat.ZIP_BASED)

    def test_zip_magic_with_unusual_version_bytes_is_still_zip(self):
        self.assertEqual(classify(b"PK\x01\x02\x00\x00", "orders.xls"), FileFormat.ZIP_BASED)

    def test_ole2_magic_is_legacy_binary(self):
        self.assertEqual(classify(OLE2_MAGIC + b"\x00" * 512, "orders.xlsx"), FileFormat.LEGACY_BINARY)

    def test_large_legacy_file_rejected_in_constrained_profile(self):
        data = OLE2_MAGIC + b"\x00" * (3 * MB)
        with self.assertRaises(LegacyFileTooLarge) as ctx:
            classify(data, "big.xls", Settings.constrained_profile())
        self.assertEqual(ctx.exception.code, "large-xls-constrained")

    def test_large_legacy_file_accepted_in_standard_profile(self):
        data = OLE2_MAGIC + b"\x00" * (3 * MB)
        self.assertEqual(classify(data, "big.xls", Settings.standard()), FileFormat.LEGACY_BINARY)

    def test_short_input_is_unknown(self):
        self.assertEqual(classify(b"PK"), FileFormat.UNKNOWN)
        self.assertEqual(classify(b""), FileFormat.UNKNOWN)

    def test_pdf_is_unknown(self):
        self.assertEqual(classify(b"%PDF-1.7\n"), FileFormat.UNKNOWN)

    def test_pre_biff8_stream_is_unknown(self):
        self.assertEqual(classify(b"\x09\x04\x06\x00\x00\x00\x10\x00"), FileFormat.UNKNOWN)

    def test_text_without_nul_is_csv_even_with_workbook_extension(self):
        data = "상품명,수량\n사과,3\n".encode("utf-8")
        self.assertEqual(classify(data, "orders.xlsx"), FileFormat.CSV)

    def test_zip_archive_named_xls_is_zip_based(self):
        self.assertEqual(classify(b"PK\x03\x04\x14\x00\x06\x00", "orders.xls"), FileFormat.ZIP_BASED)

    def test_utf16_text_with_byte_order_mark_is_csv(self):
        self.assertEqual(classify("상품명,수량\n사과,3\n".encode("utf-16"), "orders.csv"), FileFormat.CSV)
        self.assertEqual(classify(b"\xfe\xff" + "a,b\n1,2\n".encode("utf-16-be")), FileFormat.CSV)

    def test_binary_noise_is_unknown(self):
        self.assertEqual(classify(b"\x01\x00\x02\x00\x03\x00\x04"), FileFormat.UNKNOWN)

    def test_require_supported_rejects_unknown(self):
        with self.assertRaises(UnclassifiableFormat) as ctx:
            require_supported(FileFormat.UNKNOWN, "scan.pdf")
        self.assertEqual(ctx.exception.code, "unsupported-format")
        self.assertIn("scan.pdf", ctx.exception.message)
        self.assertIs(require_supported(FileFormat.CSV), FileFormat.CSV)

    def test_describe_signature_is_hex(self):
        self.assertEqual(describe_signature(b"PK\x03\x04"), "50 4b 03 04")


if __name__ == "__main__":
    unittest.main()
