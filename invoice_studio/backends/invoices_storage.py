"""Filesystem document store for invoices and related records."""
from __future__ import annotations

import json
import os
import uuid
from pathlib import Path
from typing import Any, Generic, Iterator, Optional, TypeVar

import portalocker
from pydantic import BaseModel, ValidationError

from .errors import Conflict, NotFound, ValidationFailed, describe_validation_error
from .invoices_models import Account, Client, EmailLog, Invoice, Item

STORE_ROOT_NAME = ".invoice_studio"
LOCK_TIMEOUT_SECONDS = 5

INVOICES = "invoices"
CLIENTS = "clients"
ITEMS = "items"
EMAIL_LOGS = "email_logs"
ACCOUNTS = "accounts"

DocumentT = TypeVar("DocumentT", bound=BaseModel)


def get_store_root(base_path: Optional[Path] = None) -> Path:
    """
    Resolve the storage root.

    Priority:
    1) INVOICE_STUDIO_ROOT env var (absolute or relative to cwd)
    2) explicit base_path (caller-provided)
    3) repository root (parent of invoice_studio/) to avoid dropping data in random cwd
    """

    env_root = os.getenv("INVOICE_STUDIO_ROOT", "").strip()
    if env_root:
        return Path(env_root).expanduser().resolve()

    if base_path is not None:
        return (base_path / STORE_ROOT_NAME).resolve()

    repo_root = Path(__file__).resolve().parents[2]
    return (repo_root / STORE_ROOT_NAME).resolve()


def new_id() -> str:
    return uuid.uuid4().hex


def _read_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".json.tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, sort_keys=True)
        handle.write("\n")
    os.replace(tmp_path, path)


class Collection(Generic[DocumentT]):
    """One directory of JSON documents validated through a pydantic model.

    Offers find-by-id / find / create / save / delete. Writes hold an
    exclusive lock on the collection so ``save(expected=...)`` can compare
    and swap.
    """

    def __init__(self, name: str, model: type[DocumentT], root: Optional[Path] = None):
        self.name = name
        self.model = model
        self.base = root

    @property
    def directory(self) -> Path:
        return get_store_root(self.base) / self.name

    def _path(self, document_id: str) -> Path:
        safe_id = str(document_id).strip()
        if not safe_id or "/" in safe_id or "\\" in safe_id or safe_id.startswith("."):
            raise ValidationFailed(f"Invalid {self.name} id: {document_id!r}")
        return self.directory / f"{safe_id}.json"

    def _lock(self) -> portalocker.Lock:
        self.directory.mkdir(parents=True, exist_ok=True)
        lock_file = self.directory / ".lock"
        lock_file.touch(exist_ok=True)
        # Default flags are exclusive + non-blocking, so the timeout applies.
        return portalocker.Lock(lock_file, mode="a", timeout=LOCK_TIMEOUT_SECONDS)

    def _load(self, path: Path) -> DocumentT:
        return self.model.model_validate(_read_json(path))

    def iter_paths(self) -> Iterator[Path]:
        if not self.directory.exists():
            return iter(())
        paths = [p for p in self.directory.iterdir() if p.is_file() and p.suffix == ".json"]
        paths.sort()
        return iter(paths)

    def find_by_id(self, document_id: str) -> DocumentT | None:
        path = self._path(document_id)
        try:
            return self._load(path)
        except FileNotFoundError:
            return None

    def find(self, **filters: Any) -> list[DocumentT]:
        """Documents whose attributes equal every given filter value."""

        documents = []
        for path in self.iter_paths():
            document = self._load(path)
            if all(getattr(document, key, None) == value for key, value in filters.items()):
                documents.append(document)
        return documents

    def create(self, document: DocumentT) -> DocumentT:
        path = self._path(getattr(document, "id"))
        with self._lock():
            if path.exists():
                raise Conflict(f"{self.name} {document.id} already exists")
            _write_json(path, document.model_dump(mode="json"))
        return document

    def save(self, document: DocumentT, expected: dict[str, Any] | None = None) -> DocumentT:
        """Replace a stored document.

        ``expected`` maps field names to the values the stored document must
        still hold (compare-and-swap); otherwise :class:`Conflict` is raised
        and nothing is written.
        """

        path = self._path(getattr(document, "id"))
        with self._lock():
            if expected:
                try:
                    stored = _read_json(path)
                except FileNotFoundError as exc:
                    raise NotFound(f"{self.name} {document.id} not found") from exc
                for field_name, value in expected.items():
                    if stored.get(field_name) != value:
                        raise Conflict(
                            f"{self.name} {document.id} was modified concurrently "
                            f"(expected {field_name}={value}, found {stored.get(field_name)})"
                        )
            _write_json(path, document.model_dump(mode="json"))
        return document

    def delete(self, document_id: str) -> bool:
        path = self._path(document_id)
        with self._lock():
            if not path.exists():
                return False
            path.unlink()
        return True


def build_document(model: type[DocumentT], payload: dict[str, Any]) -> DocumentT:
    """Validate a payload into a model, mapping failures to ValidationFailed."""

    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ValidationFailed(describe_validation_error(exc)) from exc


def invoices(root: Optional[Path] = None) -> Collection[Invoice]:
    return Collection(INVOICES, Invoice, root)


def clients(root: Optional[Path] = None) -> Collection[Client]:
    return Collection(CLIENTS, Client, root)


def items(root: Optional[Path] = None) -> Collection[Item]:
    return Collection(ITEMS, Item, root)


def email_logs(root: Optional[Path] = None) -> Collection[EmailLog]:
    return Collection(EMAIL_LOGS, EmailLog, root)


def accounts(root: Optional[Path] = None) -> Collection[Account]:
    return Collection(ACCOUNTS, Account, root)


__all__ = [
    "Collection",
    "accounts",
    "build_document",
    "clients",
    "email_logs",
    "get_store_root",
    "invoices",
    "items",
    "new_id",
]
