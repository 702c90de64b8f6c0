"""
Collaborator contracts for the conversion service.

The service never talks to a concrete storage backend; it is handed:

- a BlobStore for uploaded and generated files,
- a TemplateStore that resolves a template id to a Template,
- optionally an UploadRegistry that remembers which upload contents were
  already written, keyed by SHA-256.

In-memory and local-directory implementations are provided for the CLI and
for tests.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

from order_sheet.errors import TemplateInvalid
from order_sheet.template import Template

logger = logging.getLogger(__name__)

UPLOAD_BUCKET = "uploads"
GENERATED_BUCKET = "generated"


@dataclass(frozen=True)
class BlobResult:
    ok: bool
    data: Optional[bytes] = None
    error: Optional[str] = None


class BlobStore(Protocol):
    def put_blob(self, name: str, data: bytes, bucket: str) -> BlobResult:
        ...

    def get_blob(self, name: str, bucket: str) -> BlobResult:
        ...


class TemplateStore(Protocol):
    def load_template(self, template_id: str) -> Optional[Template]:
        ...


def content_digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


# ── blob stores ───────────────────────────────────────────────────────────────

class InMemoryBlobStore:
    def __init__(self) -> None:
        self._buckets: dict[str, dict[str, bytes]] = {}
        self.put_count = 0

    def put_blob(self, name: str, data: bytes, bucket: str) -> BlobResult:
        self._buckets.setdefault(bucket, {})[name] = bytes(data)
        self.put_count += 1
        return BlobResult(ok=True)

    def get_blob(self, name: str, bucket: str) -> BlobResult:
        data = self._buckets.get(bucket, {}).get(name)
        if data is None:
            return BlobResult(ok=False, error=f"'{name}' not found in bucket '{bucket}'")
        return BlobResult(ok=True, data=data)

    def names(self, bucket: str) -> list[str]:
        return sorted(self._buckets.get(bucket, {}))


class LocalBlobStore:
    """One directory per bucket under ``root``."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _path(self, name: str, bucket: str) -> Path:
        # blob names are flat; strip any directory part a caller passes in
        return self.root / bucket / Path(name).name

    def put_blob(self, name: str, data: bytes, bucket: str) -> BlobResult:
        path = self._path(name, bucket)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            return BlobResult(ok=False, error=f"Could not write {path}: {exc}")
        return BlobResult(ok=True)

    def get_blob(self, name: str, bucket: str) -> BlobResult:
        path = self._path(name, bucket)
        try:
            return BlobResult(ok=True, data=path.read_bytes())
        except FileNotFoundError:
            return BlobResult(ok=False, error=f"'{name}' not found in bucket '{bucket}'")
        except OSError as exc:
            return BlobResult(ok=False, error=f"Could not read {path}: {exc}")


# ── template stores ───────────────────────────────────────────────────────────

class InMemoryTemplateStore:
    def __init__(self, templates: Optional[dict[str, Template]] = None) -> None:
        self._templates = dict(templates or {})

    def add(self, template_id: str, template: Template) -> None:
        self._templates[str(template_id)] = template

    def load_template(self, template_id: str) -> Optional[Template]:
        return self._templates.get(str(template_id))


class JsonTemplateStore:
    """Templates stored as a JSON list of rows (or a dict of id → row)."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def _rows(self) -> dict[str, dict[str, Any]]:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise TemplateInvalid(f"Template file {self.path} is not valid JSON: {exc}") from exc

        if isinstance(payload, dict) and "template_name" in payload:
            payload = [payload]
        if isinstance(payload, dict):
            return {str(key): {"id": key, **row} for key, row in payload.items() if isinstance(row, dict)}
        if isinstance(payload, list):
            rows = {}
            for index, row in enumerate(payload, start=1):
                if not isinstance(row, dict):
                    continue
                if row.get("is_active") is False:
                    continue
                rows[str(row.get("id", index))] = row
            return rows
        raise TemplateInvalid(f"Template file {self.path} must hold a list or an object of templates.")

    def template_ids(self) -> list[str]:
        return list(self._rows())

    def load_template(self, template_id: str) -> Optional[Template]:
        row = self._rows().get(str(template_id))
        if row is None:
            return None
        return Template.from_row(row)


# ── dedup ─────────────────────────────────────────────────────────────────────

class UploadRegistry:
    """Digest → stored blob name, owned by whoever runs the service."""

    def __init__(self) -> None:
        self._names: dict[str, str] = {}
        self._lock = threading.Lock()

    def lookup(self, digest: str) -> Optional[str]:
        with self._lock:
            return self._names.get(digest)

    def remember(self, digest: str, name: str) -> None:
        with self._lock:
            self._names.setdefault(digest, name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)
