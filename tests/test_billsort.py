"""Tests for BillSort configuration parsing."""

from argparse import Namespace

import pytest

from billsort import BillSort, parse_companies, parse_company_labels

COMPANIES = "Acme Corp=clients/acme@Acme Bills; Globex=globex/; Initech@Initech-AP"


class TestParseCompanies:

    def test_name_and_root(self):
        assert parse_companies("Acme Corp=clients/acme; Globex=globex/") == {
            "Acme Corp": "clients/acme",
            "Globex": "globex",
        }

    def test_bare_name_is_its_own_root(self):
        assert parse_companies("Initech") == {"Initech": "Initech"}

    def test_blank_entries_ignored(self):
        assert parse_companies(";;  ;") == {}
        assert parse_companies("") == {}

    def test_label_is_not_part_of_the_root(self):
        assert parse_companies(COMPANIES) == {
            "Acme Corp": "clients/acme",
            "Globex": "globex",
            "Initech": "Initech",
        }

    def test_labels(self):
        assert parse_company_labels(COMPANIES) == {
            "Acme Corp": "Acme Bills",
            "Initech": "Initech-AP",
        }


class TestLabelFor:

    @pytest.fixture
    def configure(self, monkeypatch):
        def factory(label=None):
            monkeypatch.setenv("COMPANIES", COMPANIES)
            monkeypatch.setenv("MAIL_LABEL", "Invoices")
            # configure() rewrites these; restore them after the test
            for name in ("log", "classifier_provider_name", "ledger_path", "companies",
                         "company_labels", "mail_label", "label_override", "lock_timeout",
                         "docstore_driver"):
                monkeypatch.setattr(BillSort, name, getattr(BillSort, name))
            BillSort.configure(Namespace(log=False, label=label))
        return factory

    def test_each_company_reads_its_own_label(self, configure):
        configure()
        assert BillSort.label_for("Acme Corp") == "Acme Bills"
        assert BillSort.label_for("Initech") == "Initech-AP"
        assert BillSort.label_for("Globex") == "Invoices"

    def test_command_line_label_wins(self, configure):
        configure(label="Receipts")
        assert BillSort.label_for("Acme Corp") == "Receipts"
        assert BillSort.label_for("Globex") == "Receipts"
