"""Tests for IntakeEngine."""

import pytest

from billsort import BillSort
from models import ClassifierError
from storage import StorageError
from workflows import CancellationToken, IntakeEngine
from workflows.intake import DUPLICATE, FAILED, SKIPPED, STORED, TRIAGE
from workflows.log_store import STATUS_ACTIVE
from workflows.naming import validate_filename

COMPANY = "Acme Corp"
NAME = "2024-05-01_Acme_INV-1_100.00.pdf"
ACTIVE = "acme/FY-24-25/Accruals/Buffer/Active"
OUTFLOW = "acme/FY-24-25/Accruals/Bills and Invoices/May/Outflow"
BUFFER2 = "acme/FY-24-25/Accruals/Buffer2"


def names_in(driver, folder):
    if not driver.folder_exists(folder):
        return []
    return sorted(f.name for f in driver.list_files(folder))


def broken_copy(file, dest_folder, new_name=None):
    raise StorageError("quota exceeded")


class TestStore:

    def test_single_outflow_bill(self, ctx, driver, store, make_message):
        result = IntakeEngine(ctx).run(COMPANY, [make_message("m1", "invoice.pdf")])

        [decision] = result.decisions
        assert decision.action == STORED
        assert decision.canonical_name == NAME
        assert decision.unique_id == "V000001"

        [buffer_row] = store.read_all(COMPANY, "buffer")
        assert buffer_row.status == STATUS_ACTIVE
        assert buffer_row.storage_ref == f"{ACTIVE}/{NAME}"
        assert buffer_row.message_id == "m1"
        assert buffer_row.reference_date == "2024-05-01"
        assert len(store.read_all(COMPANY, "main")) == 1
        [outflow_row] = store.read_all(COMPANY, "outflow")
        assert outflow_row.storage_ref == f"{OUTFLOW}/{NAME}"
        assert outflow_row.source_ref == buffer_row.storage_ref
        assert outflow_row.financial_year == "2024-2025"
        assert outflow_row.month == "May"
        assert store.read_all(COMPANY, "inflow") == []

        assert names_in(driver, ACTIVE) == [NAME]
        assert names_in(driver, OUTFLOW) == [NAME]

    def test_inflow_bill(self, ctx, classifier, driver, store, make_message, fields):
        classifier.responses["sale.pdf"] = fields(vendor="Client", invoice="S-9", status="inflow")
        IntakeEngine(ctx).run(COMPANY, [make_message("m1", "sale.pdf")])

        assert len(store.read_all(COMPANY, "inflow")) == 1
        assert store.read_all(COMPANY, "outflow") == []
        assert names_in(driver, "acme/FY-24-25/Accruals/Bills and Invoices/May/Inflow") == \
            ["2024-05-01_Client_S-9_100.00.pdf"]

    def test_ids_are_distinct_per_document(self, ctx, classifier, make_message, fields):
        classifier.responses["b.pdf"] = fields(invoice="INV-2")
        result = IntakeEngine(ctx).run(COMPANY, [make_message("m1", "a.pdf", "b.pdf")])
        assert [d.unique_id for d in result.decisions] == ["V000001", "V000002"]

    def test_reference_date_falls_back_to_message_date(self, ctx, classifier, store, make_message,
                                                       fields):
        classifier.default = fields(invoice_date="sometime")
        IntakeEngine(ctx).run(COMPANY, [make_message("m1", "invoice.pdf")])
        # Unparseable invoice date fails validation, so the bill goes to triage
        [row] = store.read_all(COMPANY, "buffer2")
        assert row.reference_date == "2024-05-02"


class TestDuplicates:

    def test_same_name_twice_in_one_run(self, ctx, driver, store, make_message):
        result = IntakeEngine(ctx).run(COMPANY, [
            make_message("m1", "invoice.pdf"),
            make_message("m2", "invoice (copy).pdf"),
        ])

        first, second = result.decisions
        assert (first.action, second.action) == (STORED, DUPLICATE)
        assert second.repeated_ref == first.row_id

        rows = store.read_all(COMPANY, "buffer")
        assert len(rows) == 2
        assert rows[1].repeated_ref == rows[0].row_id
        assert rows[1].storage_ref == ""
        assert "Duplicate of row" in rows[1].reason
        assert names_in(driver, ACTIVE) == [NAME]
        assert len(store.read_all(COMPANY, "main")) == 1
        assert len(store.read_all(COMPANY, "outflow")) == 1

    def test_same_name_in_later_run(self, ctx, driver, store, make_message):
        engine = IntakeEngine(ctx)
        engine.run(COMPANY, [make_message("m1", "invoice.pdf")])
        result = engine.run(COMPANY, [make_message("m2", "invoice.pdf")])

        [decision] = result.decisions
        assert decision.action == DUPLICATE
        active = [r for r in store.read_all(COMPANY, "buffer") if not r.is_duplicate]
        assert len(active) == 1
        assert names_in(driver, ACTIVE) == [NAME]

    def test_externally_known_name(self, ctx, store, make_message):
        result = IntakeEngine(ctx).run(COMPANY, [make_message("m1", "invoice.pdf")],
                                       already_processed_canonical_names=[NAME])
        [decision] = result.decisions
        assert decision.action == DUPLICATE
        assert decision.repeated_ref == 0

    def test_deleted_document_does_not_block(self, ctx, store, make_message):
        engine = IntakeEngine(ctx)
        engine.run(COMPANY, [make_message("m1", "invoice.pdf")])
        store.update_row(COMPANY, "buffer", 1, status="Delete")
        result = engine.run(COMPANY, [make_message("m2", "invoice.pdf")])
        assert result.decisions[0].action == STORED


class TestFiltering:

    def test_processed_messages_are_skipped(self, ctx, classifier, make_message):
        engine = IntakeEngine(ctx)
        engine.run(COMPANY, [make_message("m1", "invoice.pdf")])
        result = engine.run(COMPANY, [make_message("m1", "invoice.pdf")])
        assert result.decisions == []
        assert classifier.calls == ["invoice.pdf"]

    def test_supplied_message_ids_are_skipped(self, ctx, make_message):
        result = IntakeEngine(ctx).run(COMPANY, [make_message("m1", "invoice.pdf")],
                                       already_processed_message_ids=["m1"])
        assert result.decisions == []
        assert result.total == 0

    def test_non_user_attachments(self, ctx, make_message):
        result = IntakeEngine(ctx).run(COMPANY, [make_message("m1", "invoice.pdf", "Thumbs.db")])
        actions = {d.attachment_name: d.action for d in result.decisions}
        assert actions == {"Thumbs.db": SKIPPED, "invoice.pdf": STORED}
        assert result.total == 1


class TestTriage:

    def test_classifier_outage_routes_to_buffer2(self, ctx, classifier, driver, store, make_message):
        classifier.default = ClassifierError("HTTP 500 Internal Server Error")
        result = IntakeEngine(ctx).run(COMPANY, [make_message("m1", "invoice.pdf")])

        [decision] = result.decisions
        assert decision.action == TRIAGE
        assert validate_filename(decision.canonical_name).is_valid
        assert len(classifier.calls) == 2

        [row] = store.read_all(COMPANY, "buffer2")
        assert row.invoice_status == "irrelevant"
        assert row.relevance == ""
        assert row.unique_id == decision.unique_id
        assert names_in(driver, BUFFER2) == [decision.canonical_name]
        assert store.read_all(COMPANY, "buffer") == []
        assert store.read_all(COMPANY, "main") == []

    def test_oversized_classifier_date_does_not_stop_the_run(self, ctx, classifier, store,
                                                              make_message, fields):
        classifier.responses["a.pdf"] = fields(invoice_date="May 1, 99999999999")
        classifier.responses["b.pdf"] = fields(invoice="INV-2")
        result = IntakeEngine(ctx).run(COMPANY, [make_message("m1", "a.pdf", "b.pdf")])

        assert [d.action for d in result.decisions] == [TRIAGE, STORED]
        [row] = store.read_all(COMPANY, "buffer2")
        assert row.reference_date == "2024-05-02"

    def test_triage_has_no_duplicate_check(self, ctx, classifier, store, make_message, fields):
        classifier.default = fields(status="irrelevant")
        result = IntakeEngine(ctx).run(COMPANY, [
            make_message("m1", "invoice.pdf"), make_message("m2", "invoice.pdf"),
        ])
        assert [d.action for d in result.decisions] == [TRIAGE, TRIAGE]
        assert len(store.read_all(COMPANY, "buffer2")) == 2


class TestFailures:

    def test_storage_failure_leaves_no_trace(self, ctx, driver, store, make_message, monkeypatch):
        monkeypatch.setattr(driver, "copy_file", broken_copy)
        result = IntakeEngine(ctx).run(COMPANY, [make_message("m1", "invoice.pdf")])

        [decision] = result.decisions
        assert decision.action == FAILED
        assert "quota exceeded" in decision.detail
        assert "operation=store in Buffer/Active" in decision.detail
        assert names_in(driver, ACTIVE) == []
        assert store.read_all(COMPANY, "buffer") == []

    def test_failed_message_is_retried_next_run(self, ctx, driver, make_message, monkeypatch):
        engine = IntakeEngine(ctx)
        with monkeypatch.context() as patch:
            patch.setattr(driver, "copy_file", broken_copy)
            engine.run(COMPANY, [make_message("m1", "invoice.pdf")])
        result = engine.run(COMPANY, [make_message("m1", "invoice.pdf")])
        assert result.decisions[0].action == STORED

    def test_partly_stored_message_is_completed_next_run(self, ctx, classifier, driver, store,
                                                         make_message, fields, monkeypatch):
        classifier.responses["b.pdf"] = fields(invoice="INV-2")
        real_copy = driver.copy_file

        def copy_fails_for_second(file, dest_folder, new_name=None):
            if "INV-2" in (new_name or file.name):
                raise StorageError("quota exceeded")
            return real_copy(file, dest_folder, new_name)

        engine = IntakeEngine(ctx)
        with monkeypatch.context() as patch:
            patch.setattr(driver, "copy_file", copy_fails_for_second)
            first = engine.run(COMPANY, [make_message("m1", "a.pdf", "b.pdf")])
        assert [(d.attachment_name, d.action) for d in first.decisions] == \
            [("a.pdf", STORED), ("b.pdf", FAILED)]

        second = engine.run(COMPANY, [make_message("m1", "a.pdf", "b.pdf")])
        assert [(d.attachment_name, d.action) for d in second.decisions] == [("b.pdf", STORED)]
        assert second.total == 1
        assert names_in(driver, ACTIVE) == [NAME, "2024-05-01_Acme_INV-2_100.00.pdf"]
        assert [r.attachment_id for r in store.read_all(COMPANY, "buffer")] == ["m1-0", "m1-1"]

    def test_held_lock_fails_the_run(self, ctx, make_message):
        from workflows import LockTimeoutError
        with ctx.locks.hold(COMPANY):
            with pytest.raises(LockTimeoutError):
                IntakeEngine(ctx).run(COMPANY, [make_message("m1", "invoice.pdf")])


class TestCancellation:

    def test_cancel_before_start_has_no_side_effects(self, ctx, driver, store, make_message):
        token = CancellationToken()
        token.cancel()
        result = IntakeEngine(ctx).run(COMPANY, [make_message("m1", "invoice.pdf")], token=token)
        assert result.cancelled
        assert result.decisions == []
        assert store.read_all(COMPANY, "buffer") == []
        assert not driver.folder_exists("acme")

    def test_cancel_mid_run_keeps_committed_work(self, ctx, classifier, store, make_message, fields):
        token = CancellationToken()
        classifier.responses["b.pdf"] = fields(invoice="INV-2")
        original = classifier.classify

        def cancel_after_first(data, mime_type, filename):
            token.cancel()
            return original(data, mime_type, filename)

        classifier.classify = cancel_after_first
        result = IntakeEngine(ctx).run(COMPANY, [
            make_message("m1", "a.pdf"), make_message("m2", "b.pdf"),
        ], token=token)

        assert result.cancelled
        assert result.total == 2
        assert [d.action for d in result.decisions] == [STORED]
        assert len(store.read_all(COMPANY, "buffer")) == 1

    def test_attachments_left_by_a_cancel_are_picked_up(self, ctx, classifier, store,
                                                        make_message, fields):
        token = CancellationToken()
        classifier.responses["b.pdf"] = fields(invoice="INV-2")
        original = classifier.classify

        def cancel_after_first(data, mime_type, filename):
            token.cancel()
            return original(data, mime_type, filename)

        classifier.classify = cancel_after_first
        engine = IntakeEngine(ctx)
        engine.run(COMPANY, [make_message("m1", "a.pdf", "b.pdf")], token=token)
        classifier.classify = original

        rerun = engine.run(COMPANY, [make_message("m1", "a.pdf", "b.pdf")])
        assert [(d.attachment_name, d.action) for d in rerun.decisions] == [("b.pdf", STORED)]
        assert sorted(r.canonical_name for r in store.read_all(COMPANY, "buffer")) == [
            "2024-05-01_Acme_INV-1_100.00.pdf", "2024-05-01_Acme_INV-2_100.00.pdf",
        ]


class TestActivityLog:

    def test_decisions_written_to_store(self, ctx, driver, make_message):
        ctx.activity_log = True
        IntakeEngine(ctx).run(COMPANY, [make_message("m1", "invoice.pdf")])
        [log_file] = driver.list_files("acme/--ActivityLog")
        text = driver.read_text(log_file.path)
        assert "INTAKE STORED" in text
        assert NAME in text


class TestTallies:

    def test_processed_decisions_are_tallied(self, ctx, make_message):
        BillSort.reset_tallies()
        IntakeEngine(ctx).run(COMPANY, [
            make_message("m1", "invoice.pdf", "Thumbs.db"), make_message("m2", "invoice.pdf"),
        ])
        assert BillSort.tallies() == {STORED: 1, DUPLICATE: 1}
