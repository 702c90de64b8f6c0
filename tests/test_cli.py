from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

from _support import workbook_rows

from order_sheet import __version__
from order_sheet.cli import EXIT_TEMPLATE_ERROR, EXIT_UNREADABLE, CliError, exit_code_for_error, parse_manual_fields
from order_sheet.errors import BlobStoreFailure, TemplateInvalid, WorkbookUnreadable

ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "order_sheet.cli"]
FIXED_STAMP = "20260301_010203"

TEMPLATE_ROWS = [
    {
        "id": "fruit",
        "template_name": "과일상회",
        "supplier_field_mapping": {"품목": "product", "개수": "qty", "메모": "[고정값: 빠른배송]"},
        "order_field_mapping": {"product": "상품명", "qty": "수량"},
    },
    {
        "id": "other",
        "template_name": "기타",
        "supplier_field_mapping": {"품목": "상품명"},
        "order_field_mapping": {},
    },
]


def run_cli(*args: str, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
    merged_env = dict(os.environ)
    merged_env["ORDER_SHEET_OUTPUT_STAMP"] = FIXED_STAMP
    merged_env["PYTHONIOENCODING"] = "utf-8"
    merged_env.pop("VERCEL", None)
    merged_env.pop("ORDER_SHEET_PROFILE", None)
    merged_env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(ROOT), merged_env.get("PYTHONPATH")]))
    if env:
        merged_env.update(env)
    return subprocess.run(
        [*CLI, *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
        encoding="utf-8",
        env=merged_env,
    )


class OrderSheetCliTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self._tmp.name)
        self.orders = self.tmpdir / "orders.csv"
        self.orders.write_bytes("상품명,수량\n사과,3\n배,2\n".encode("utf-8"))
        self.templates = self.tmpdir / "templates.json"
        self.templates.write_text(json.dumps(TEMPLATE_ROWS, ensure_ascii=False), encoding="utf-8")

    def tearDown(self):
        self._tmp.cleanup()

    def test_version(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(proc.stdout.strip(), __version__)

    def test_convert_writes_workbook_and_json(self):
        output = self.tmpdir / "out" / "po.xlsx"
        proc = run_cli(
            "convert",
            str(self.orders),
            "--template",
            str(self.templates),
            "--template-id",
            "fruit",
            "-o",
            str(output),
            "--json",
        )
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertTrue(payload["success"])
        self.assertEqual(payload["processedRowCount"], 2)
        self.assertEqual(payload["fileName"], f"purchase_order_{FIXED_STAMP}.xlsx")
        self.assertEqual(payload["summary"]["status"], "ok")
        rows = workbook_rows(output.read_bytes())
        self.assertEqual(rows[0], ["품목", "개수", "메모"])
        self.assertEqual(rows[1], ["사과", 3, "빠른배송"])
        self.assertEqual(rows[3][:2], ["Total", 5])

    def test_convert_manual_values(self):
        output = self.tmpdir / "po.xlsx"
        proc = run_cli(
            "convert", str(self.orders), "--template", str(self.templates), "--template-id", "fruit",
            "--set", "메모=직접 수령", "-o", str(output), "-q",
        )
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(workbook_rows(output.read_bytes())[1][2], "직접 수령")

    def test_ambiguous_template_file_exits_3(self):
        proc = run_cli("convert", str(self.orders), "--template", str(self.templates))
        self.assertEqual(proc.returncode, 3)
        self.assertIn("--template-id", proc.stderr)

    def test_unsupported_input_exits_2(self):
        blob = self.tmpdir / "scan.pdf"
        blob.write_bytes(b"%PDF-1.7\n\x00\x01")
        proc = run_cli("convert", str(blob), "--template", str(self.templates), "--template-id", "fruit", "--json")
        self.assertEqual(proc.returncode, 2)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["code"], "unsupported-format")

    def test_headers_json(self):
        proc = run_cli("headers", str(self.orders), "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(json.loads(proc.stdout)["headers"], ["상품명", "수량"])

    def test_preview_json_and_text(self):
        proc = run_cli("preview", str(self.orders), "--limit", "1", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["data"], [{"상품명": "사과", "수량": "3"}])
        self.assertEqual(payload["totalRows"], 2)

        proc = run_cli("preview", str(self.orders))
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(proc.stdout.splitlines(), ["상품명\t수량", "사과\t3", "배\t2"])
        self.assertIn("Showing 2 of 2 data rows", proc.stderr)

    def test_direct_records(self):
        records = self.tmpdir / "records.json"
        records.write_text(json.dumps({"상품명": "배", "수량": "4"}, ensure_ascii=False), encoding="utf-8")
        output = self.tmpdir / "direct.xlsx"
        proc = run_cli(
            "direct", str(records), "--template", str(self.templates), "--template-id", "fruit",
            "-o", str(output), "--json",
        )
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["sourceFormat"], "direct")
        self.assertEqual(payload["summary"]["command"], "direct")
        self.assertEqual(workbook_rows(output.read_bytes())[1], ["배", 4, "빠른배송"])

    def test_direct_records_must_be_json(self):
        records = self.tmpdir / "records.json"
        records.write_text("not json", encoding="utf-8")
        proc = run_cli("direct", str(records), "--template", str(self.templates), "--template-id", "fruit")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("not valid JSON", proc.stderr)

    def test_sniff(self):
        proc = run_cli("sniff", str(self.orders), "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertEqual(payload["format"], "csv")
        self.assertEqual(payload["encoding"], "utf-8")

    def test_missing_input_and_bad_arguments_exit_1(self):
        self.assertEqual(run_cli("sniff", str(self.tmpdir / "missing.csv")).returncode, 1)
        self.assertEqual(run_cli("convert").returncode, 1)


class CliHelperTests(unittest.TestCase):
    def test_exit_codes_for_errors(self):
        self.assertEqual(exit_code_for_error(WorkbookUnreadable("x")), EXIT_UNREADABLE)
        self.assertEqual(exit_code_for_error(TemplateInvalid("x")), EXIT_TEMPLATE_ERROR)
        self.assertEqual(exit_code_for_error(BlobStoreFailure("x")), 1)

    def test_parse_manual_fields(self):
        self.assertEqual(parse_manual_fields(["a=1", "b = x=y"]), {"a": "1", "b": " x=y"})
        with self.assertRaises(CliError):
            parse_manual_fields(["novalue"])


if __name__ == "__main__":
    unittest.main()
