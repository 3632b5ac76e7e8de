"""
Unit tests that every package module loads.
"""
import importlib

import pytest

MODULES = [
    "config",
    "main",
    "models",
    "reconciliation",
    "reconciliation.audit",
    "reconciliation.autofix",
    "reconciliation.database",
    "reconciliation.documents",
    "reconciliation.errors",
    "reconciliation.invoice_chain",
    "reconciliation.ledger",
    "reconciliation.locks",
    "reconciliation.margin",
    "reconciliation.notifications",
    "reconciliation.pricing",
    "reconciliation.service",
    "reconciliation.stores",
    "reconciliation.sync",
    "dashboard.app",
    "dashboard.models",
]


@pytest.mark.unit
class TestImports:
    """Tests for module loading."""

    @pytest.mark.parametrize("name", MODULES)
    def test_module_imports(self, name):
        """Test the module imports without error."""
        assert importlib.import_module(name) is not None

    def test_store_query_methods(self):
        """Test the stores expose their filtered queries alongside leg lookups."""
        from reconciliation.stores import InvoiceStore, PurchaseOrderStore, SyncLogStore

        for store in (PurchaseOrderStore, InvoiceStore):
            assert callable(store.find)
            assert callable(store.find_for_leg)
        assert callable(SyncLogStore.find)
