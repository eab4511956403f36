import json
import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from invoice_studio.backends import invoices_storage as storage
from invoice_studio.backends.errors import Conflict, NotFound, ValidationFailed
from invoice_studio.backends.invoices_models import Client


class CollectionTests(unittest.TestCase):
    def setUp(self):
        self.tempdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tempdir.cleanup)

        self.store_root = Path(self.tempdir.name) / ".invoice_studio"
        self.env_patch = patch.dict(os.environ, {"INVOICE_STUDIO_ROOT": str(self.store_root)})
        self.env_patch.start()
        self.addCleanup(self.env_patch.stop)

        self.clients = storage.clients()

    def _client(self, **overrides) -> Client:
        values = {"id": "c1", "owner": "user-1", "name": "Acme", "email": "a@acme.test"}
        values.update(overrides)
        return Client(**values)

    def test_store_root_from_env(self):
        self.assertEqual(storage.get_store_root(), self.store_root.resolve())

    def test_store_root_from_base_path(self):
        with patch.dict(os.environ, {"INVOICE_STUDIO_ROOT": ""}):
            base = Path(self.tempdir.name)
            self.assertEqual(storage.get_store_root(base), (base / ".invoice_studio").resolve())

    def test_create_and_find(self):
        self.clients.create(self._client())
        self.clients.create(self._client(id="c2", owner="user-2"))

        self.assertEqual(self.clients.find_by_id("c1").name, "Acme")
        self.assertIsNone(self.clients.find_by_id("missing"))
        self.assertEqual([c.id for c in self.clients.find(owner="user-2")], ["c2"])

        stored = json.loads((self.store_root / "clients" / "c1.json").read_text(encoding="utf-8"))
        self.assertEqual(stored["email"], "a@acme.test")

    def test_create_twice_conflicts(self):
        self.clients.create(self._client())
        with self.assertRaises(Conflict):
            self.clients.create(self._client(name="Other"))
        self.assertEqual(self.clients.find_by_id("c1").name, "Acme")

    def test_save_compare_and_swap(self):
        self.clients.create(self._client())

        self.clients.save(self._client(name="Acme 2"), expected={"name": "Acme"})
        self.assertEqual(self.clients.find_by_id("c1").name, "Acme 2")

        with self.assertRaises(Conflict):
            self.clients.save(self._client(name="Acme 3"), expected={"name": "Acme"})
        self.assertEqual(self.clients.find_by_id("c1").name, "Acme 2")

    def test_save_expected_on_missing_document(self):
        with self.assertRaises(NotFound):
            self.clients.save(self._client(), expected={"name": "Acme"})

    def test_delete(self):
        self.clients.create(self._client())

        self.assertTrue(self.clients.delete("c1"))
        self.assertFalse(self.clients.delete("c1"))
        self.assertIsNone(self.clients.find_by_id("c1"))

    def test_unsafe_ids_are_rejected(self):
        for bad_id in ("", "../c1", "a/b", ".lock"):
            with self.subTest(bad_id=bad_id):
                with self.assertRaises(ValidationFailed):
                    self.clients.find_by_id(bad_id)

    def test_build_document_maps_validation_errors(self):
        with self.assertRaises(ValidationFailed) as ctx:
            storage.build_document(Client, {"id": "c1", "owner": "u", "name": "", "email": "x"})
        self.assertIn("name", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
