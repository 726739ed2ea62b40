"""Tests for financial years and the folder router."""

import os
import shutil
from datetime import date

import pytest

from storage import StorageError
from workflows.folders import (
    FolderKind,
    FolderRouter,
    financial_year,
    financial_year_folder,
    month_name,
    shift_financial_year,
)

COMPANIES = {"Acme Corp": "acme", "Beta": "clients/beta"}


class TestFinancialYear:

    def test_march_belongs_to_previous_year(self):
        assert financial_year(date(2024, 3, 15)) == "2023-2024"

    def test_april_starts_new_year(self):
        assert financial_year(date(2024, 4, 1)) == "2024-2025"

    def test_folder_name(self):
        assert financial_year_folder(date(2024, 5, 1)) == "FY-24-25"
        assert financial_year_folder(date(2000, 1, 1)) == "FY-99-00"

    def test_month_name(self):
        assert month_name(date(2024, 5, 1)) == "May"

    def test_shift_clamps_day(self):
        assert shift_financial_year(date(2024, 2, 29), -1) == date(2023, 2, 28)


class TestLocate:

    def test_buffer_paths(self):
        router = FolderRouter(driver=None, companies=COMPANIES)
        d = date(2024, 5, 1)
        assert router.locate("Acme Corp", d, FolderKind.BUFFER_ACTIVE).path == \
            "acme/FY-24-25/Accruals/Buffer/Active"
        assert router.locate("Acme Corp", d, FolderKind.BUFFER_DELETED).path == \
            "acme/FY-24-25/Accruals/Buffer/Deleted"
        assert router.locate("Beta", d, FolderKind.BUFFER2).path == \
            "clients/beta/FY-24-25/Accruals/Buffer2"

    def test_flow_paths_carry_month(self):
        router = FolderRouter(driver=None, companies=COMPANIES)
        locator = router.locate("Acme Corp", date(2025, 1, 10), FolderKind.INFLOW)
        assert locator.path == "acme/FY-24-25/Accruals/Bills and Invoices/January/Inflow"
        assert locator.month == "January"
        assert locator.financial_year == "2024-2025"

    def test_unknown_company(self):
        router = FolderRouter(driver=None, companies=COMPANIES)
        with pytest.raises(ValueError):
            router.locate("Nobody", date(2024, 5, 1), FolderKind.BUFFER2)


class TestClassifyPath:

    @pytest.mark.parametrize("path,expected", [
        ("acme/FY-24-25/Accruals/Buffer/Active/x.pdf", (FolderKind.BUFFER_ACTIVE, "2024-2025")),
        ("acme/FY-23-24/Accruals/Buffer/Deleted/x.pdf", (FolderKind.BUFFER_DELETED, "2023-2024")),
        ("acme/FY-24-25/Accruals/Buffer2/x.pdf", (FolderKind.BUFFER2, "2024-2025")),
        ("acme/FY-24-25/Accruals/Bills and Invoices/May/Outflow/x.pdf", (FolderKind.OUTFLOW, "2024-2025")),
        ("acme/FY-24-25/Accruals/Other/x.pdf", None),
        ("acme/x.pdf", None),
        ("elsewhere/FY-24-25/Accruals/Buffer2/x.pdf", None),
    ])
    def test_classify(self, path, expected):
        router = FolderRouter(driver=None, companies=COMPANIES)
        assert router.classify_path("Acme Corp", path) == expected


class TestResolve:

    def test_creates_folder_chain(self, driver):
        router = FolderRouter(driver, COMPANIES)
        locator = router.resolve("Acme Corp", date(2024, 5, 1), FolderKind.OUTFLOW)
        assert driver.folder_exists(locator.path)

    def test_resolve_is_idempotent(self, driver):
        router = FolderRouter(driver, COMPANIES)
        first = router.resolve("Acme Corp", date(2024, 5, 1), FolderKind.BUFFER_ACTIVE)
        second = router.resolve("Acme Corp", date(2024, 6, 1), FolderKind.BUFFER_ACTIVE)
        assert first == second

    def test_create_in_recovers_from_stale_cache(self, driver, temp_dir):
        router = FolderRouter(driver, COMPANIES)
        locator = router.resolve("Acme Corp", date(2024, 5, 1), FolderKind.BUFFER2)
        # Folder removed behind the router's back
        shutil.rmtree(os.path.join(temp_dir, "acme"))

        file = router.create_in(locator, b"data", "bill.pdf")
        assert file.path == f"{locator.path}/bill.pdf"

    def test_create_in_reraises_persistent_failure(self, driver):
        class Broken:
            def get_or_create_folder(self, parent, name):
                return None

            def create_file(self, folder, data, name, mime_type=None):
                raise StorageError("disk full")

        router = FolderRouter(Broken(), COMPANIES)
        locator = router.resolve("Acme Corp", date(2024, 5, 1), FolderKind.BUFFER2)
        with pytest.raises(StorageError):
            router.create_in(locator, b"data", "bill.pdf")
