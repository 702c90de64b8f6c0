from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

import _support  # noqa: F401

from order_sheet.errors import TemplateInvalid
from order_sheet.stores import (
    InMemoryBlobStore,
    InMemoryTemplateStore,
    JsonTemplateStore,
    LocalBlobStore,
    UploadRegistry,
    content_digest,
)
from order_sheet.template import Template

ROW = {
    "id": "fruit",
    "template_name": "과일상회",
    "supplier_field_mapping": {"품목": "상품명"},
    "order_field_mapping": {},
}


class BlobStoreTests(unittest.TestCase):
    def test_in_memory_round_trip_and_missing(self):
        store = InMemoryBlobStore()
        self.assertTrue(store.put_blob("a.csv", b"data", "uploads").ok)
        self.assertEqual(store.get_blob("a.csv", "uploads").data, b"data")
        missing = store.get_blob("a.csv", "generated")
        self.assertFalse(missing.ok)
        self.assertIn("not found", missing.error)
        self.assertEqual(store.names("uploads"), ["a.csv"])

    def test_local_store_uses_bucket_directories(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = LocalBlobStore(tmpdir)
            self.assertTrue(store.put_blob("../escape.xlsx", b"x", "generated").ok)
            self.assertTrue((Path(tmpdir) / "generated" / "escape.xlsx").exists())
            self.assertEqual(store.get_blob("escape.xlsx", "generated").data, b"x")
            self.assertFalse(store.get_blob("nope.xlsx", "generated").ok)


class TemplateStoreTests(unittest.TestCase):
    def test_in_memory(self):
        template = Template(name="t", ordered_target_fields=("A",))
        store = InMemoryTemplateStore({"1": template})
        self.assertIs(store.load_template(1), template)
        self.assertIsNone(store.load_template("2"))

    def test_json_list_skips_inactive_rows(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "templates.json"
            rows = [ROW, {**ROW, "id": "old", "is_active": False}]
            path.write_text(json.dumps(rows, ensure_ascii=False), encoding="utf-8")
            store = JsonTemplateStore(path)
            self.assertEqual(store.template_ids(), ["fruit"])
            self.assertEqual(store.load_template("fruit").name, "과일상회")
            self.assertIsNone(store.load_template("old"))

    def test_json_single_row_and_mapping_forms(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            single = Path(tmpdir) / "single.json"
            single.write_text(json.dumps({k: v for k, v in ROW.items() if k != "id"}), encoding="utf-8")
            self.assertEqual(JsonTemplateStore(single).template_ids(), ["1"])

            keyed = Path(tmpdir) / "keyed.json"
            keyed.write_text(json.dumps({"abc": ROW}), encoding="utf-8")
            self.assertEqual(JsonTemplateStore(keyed).load_template("abc").ordered_target_fields, ("품목",))

    def test_invalid_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "broken.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertRaises(TemplateInvalid):
                JsonTemplateStore(path).template_ids()


class UploadRegistryTests(unittest.TestCase):
    def test_first_name_is_kept(self):
        registry = UploadRegistry()
        digest = content_digest(b"data")
        self.assertIsNone(registry.lookup(digest))
        registry.remember(digest, "first.csv")
        registry.remember(digest, "second.csv")
        self.assertEqual(registry.lookup(digest), "first.csv")
        self.assertEqual(len(registry), 1)


if __name__ == "__main__":
    unittest.main()
