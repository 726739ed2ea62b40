"""Tests for LifecycleMachine."""

import os
import sqlite3

import pytest

from storage import StorageError
from workflows import (
    ErrorKind,
    FieldChange,
    IntakeEngine,
    LifecycleMachine,
    LockTimeoutError,
)
from workflows.log_store import REF_DELETED, REF_NOT_FOUND, STATUS_ACTIVE, STATUS_DELETE

COMPANY = "Acme Corp"
NAME = "2024-05-01_Acme_INV-1_100.00.pdf"
ACTIVE = "acme/FY-24-25/Accruals/Buffer/Active"
DELETED = "acme/FY-24-25/Accruals/Buffer/Deleted"
OUTFLOW = "acme/FY-24-25/Accruals/Bills and Invoices/May/Outflow"
BUFFER2 = "acme/FY-24-25/Accruals/Buffer2"


def names_in(driver, folder):
    if not driver.folder_exists(folder):
        return []
    return sorted(f.name for f in driver.list_files(folder))


def assert_logs_match_status(store, row_id):
    """Active rows have exactly one main and one flow row; deleted rows none."""
    record = store.get_row(COMPANY, "buffer", row_id)
    uid = record.unique_id
    main = store.find_rows(COMPANY, "main", lambda r: r.unique_id == uid)
    flow = store.find_rows(COMPANY, record.invoice_status, lambda r: r.unique_id == uid)
    if record.status == STATUS_ACTIVE:
        assert [r.storage_ref for r in main] == [record.storage_ref]
        assert [r.source_ref for r in flow] == [record.storage_ref]
    else:
        assert main == []
        assert flow == []


@pytest.fixture
def machine(ctx):
    return LifecycleMachine(ctx)


@pytest.fixture
def ingest(ctx, make_message):
    """Run intake for messages built from (message_id, filename) pairs."""
    def run(*pairs):
        return IntakeEngine(ctx).run(COMPANY, [make_message(m, name) for m, name in pairs])
    return run


class TestDelete:

    def test_delete_archives_file_and_drops_logs(self, machine, ingest, driver, store):
        ingest(("m1", "invoice.pdf"))
        result = machine.delete(COMPANY, 1, "wrong company")

        assert result.ok
        assert result.status == STATUS_DELETE
        assert names_in(driver, ACTIVE) == []
        assert names_in(driver, OUTFLOW) == []
        assert names_in(driver, DELETED) == [NAME]
        assert store.read_all(COMPANY, "main") == []
        assert store.read_all(COMPANY, "outflow") == []

        record = store.get_row(COMPANY, "buffer", 1)
        assert record.status == STATUS_DELETE
        assert record.storage_ref == REF_DELETED
        assert record.archived_ref == f"{DELETED}/{NAME}"
        assert record.reason == "wrong company"
        assert record.unique_id == "V000001"

    def test_reason_required(self, machine, ingest, store):
        ingest(("m1", "invoice.pdf"))
        result = machine.delete(COMPANY, 1, "   ")
        assert not result.ok
        assert result.error_kind == ErrorKind.VALIDATION
        assert result.status == STATUS_ACTIVE
        assert store.get_row(COMPANY, "buffer", 1).status == STATUS_ACTIVE

    def test_already_deleted(self, machine, ingest):
        ingest(("m1", "invoice.pdf"))
        machine.delete(COMPANY, 1, "x")
        result = machine.delete(COMPANY, 1, "again")
        assert result.error_kind == ErrorKind.PRECONDITION

    def test_found_only_as_flow_copy(self, machine, ingest, driver, temp_dir):
        ingest(("m1", "invoice.pdf"))
        os.remove(os.path.join(temp_dir, ACTIVE, NAME))

        result = machine.delete(COMPANY, 1, "cleanup")

        assert result.ok
        assert names_in(driver, DELETED) == [NAME]
        assert names_in(driver, OUTFLOW) == []

    def test_not_found_fails_closed(self, machine, ingest, store, temp_dir):
        ingest(("m1", "invoice.pdf"))
        os.remove(os.path.join(temp_dir, ACTIVE, NAME))
        os.remove(os.path.join(temp_dir, OUTFLOW, NAME))

        result = machine.delete(COMPANY, 1, "cleanup")

        assert not result.ok
        assert result.error_kind == ErrorKind.NOT_FOUND
        record = store.get_row(COMPANY, "buffer", 1)
        assert record.storage_ref == REF_NOT_FOUND
        assert record.status == STATUS_ACTIVE
        assert len(store.read_all(COMPANY, "main")) == 1

    def test_move_failure_touches_no_log(self, machine, ingest, driver, store, monkeypatch):
        ingest(("m1", "invoice.pdf"))

        def broken_move(file, dest_folder):
            raise StorageError("rate limited")

        monkeypatch.setattr(driver, "move_file", broken_move)
        result = machine.delete(COMPANY, 1, "cleanup")

        assert result.error_kind == ErrorKind.TRANSIENT_IO
        assert result.status == STATUS_ACTIVE
        assert "rate limited" in result.message
        assert names_in(driver, ACTIVE) == [NAME]
        record = store.get_row(COMPANY, "buffer", 1)
        assert record.storage_ref == f"{ACTIVE}/{NAME}"
        assert record.status == STATUS_ACTIVE
        assert record.last_error.startswith(ErrorKind.TRANSIENT_IO)
        assert "rate limited" in record.last_error

    def test_success_clears_the_recorded_error(self, machine, ingest, driver, store, monkeypatch):
        ingest(("m1", "invoice.pdf"))

        def broken_move(file, dest_folder):
            raise StorageError("rate limited")

        monkeypatch.setattr(driver, "move_file", broken_move)
        machine.delete(COMPANY, 1, "cleanup")
        monkeypatch.undo()

        assert machine.delete(COMPANY, 1, "cleanup").ok
        assert store.get_row(COMPANY, "buffer", 1).last_error == ""

    def test_log_failure_keeps_file_moved(self, machine, ingest, driver, store, monkeypatch):
        ingest(("m1", "invoice.pdf"))

        def broken_update(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(store, "update_row", broken_update)
        result = machine.delete(COMPANY, 1, "cleanup")

        assert result.error_kind == ErrorKind.CONSISTENCY
        assert result.status == STATUS_ACTIVE
        assert "database is locked" in result.message
        assert names_in(driver, DELETED) == [NAME]
        monkeypatch.undo()
        assert store.get_row(COMPANY, "buffer", 1).status == STATUS_ACTIVE
        assert len(store.read_all(COMPANY, "main")) == 1
        assert len(store.read_all(COMPANY, "outflow")) == 1
        assert_logs_match_status(store, 1)

    def test_duplicate_row_owns_no_file(self, machine, ingest, driver, store):
        ingest(("m1", "invoice.pdf"), ("m2", "invoice.pdf"))
        result = machine.delete(COMPANY, 2, "duplicate")

        assert result.ok
        record = store.get_row(COMPANY, "buffer", 2)
        assert (record.status, record.storage_ref) == (STATUS_DELETE, REF_DELETED)
        assert names_in(driver, ACTIVE) == [NAME]
        assert_logs_match_status(store, 1)


class TestActivate:

    def test_reactivate_restores_file_and_logs(self, machine, ingest, driver, store):
        ingest(("m1", "invoice.pdf"))
        machine.delete(COMPANY, 1, "mistake?")

        result = machine.activate(COMPANY, 1, "it was ours after all")

        assert result.ok
        assert result.status == STATUS_ACTIVE
        assert names_in(driver, ACTIVE) == [NAME]
        assert names_in(driver, OUTFLOW) == [NAME]
        assert names_in(driver, DELETED) == []
        record = store.get_row(COMPANY, "buffer", 1)
        assert record.storage_ref == f"{ACTIVE}/{NAME}"
        assert record.archived_ref == ""
        assert record.invoice_status == "outflow"
        assert_logs_match_status(store, 1)

    def test_unique_id_survives_round_trips(self, machine, ingest, store):
        ingest(("m1", "invoice.pdf"))
        for step, call in enumerate([machine.delete, machine.activate, machine.delete,
                                     machine.activate]):
            assert call(COMPANY, 1, f"step {step}").ok
            assert store.get_row(COMPANY, "buffer", 1).unique_id == "V000001"
            assert_logs_match_status(store, 1)

    def test_reclassification_can_change_flow(self, machine, ingest, classifier, fields, driver,
                                              store):
        ingest(("m1", "invoice.pdf"))
        machine.delete(COMPANY, 1, "wrong direction")
        classifier.responses[NAME] = fields(status="inflow")

        assert machine.activate(COMPANY, 1, "it is a sale").ok
        assert names_in(driver, "acme/FY-24-25/Accruals/Bills and Invoices/May/Inflow") == [NAME]
        assert names_in(driver, OUTFLOW) == []
        assert store.get_row(COMPANY, "buffer", 1).invoice_status == "inflow"
        assert_logs_match_status(store, 1)

    def test_missing_unique_id_is_minted(self, machine, ingest, store):
        ingest(("m1", "invoice.pdf"))
        machine.delete(COMPANY, 1, "x")
        store.update_row(COMPANY, "buffer", 1, unique_id="")

        assert machine.activate(COMPANY, 1, "restore").ok
        assert store.get_row(COMPANY, "buffer", 1).unique_id == "V000002"

    def test_reason_required(self, machine, ingest):
        ingest(("m1", "invoice.pdf"))
        machine.delete(COMPANY, 1, "x")
        result = machine.activate(COMPANY, 1, "")
        assert result.error_kind == ErrorKind.VALIDATION
        assert result.status == STATUS_DELETE

    def test_already_active(self, machine, ingest):
        ingest(("m1", "invoice.pdf"))
        assert machine.activate(COMPANY, 1, "why").error_kind == ErrorKind.PRECONDITION

    def test_refused_when_name_active_elsewhere(self, machine, ingest, store):
        ingest(("m1", "invoice.pdf"))
        machine.delete(COMPANY, 1, "x")
        ingest(("m2", "invoice.pdf"))

        result = machine.activate(COMPANY, 1, "restore")
        assert result.error_kind == ErrorKind.PRECONDITION
        assert "row 2" in result.message
        assert store.get_row(COMPANY, "buffer", 1).status == STATUS_DELETE

    def test_duplicate_row_refused(self, machine, ingest):
        ingest(("m1", "invoice.pdf"), ("m2", "invoice.pdf"))
        machine.delete(COMPANY, 2, "dup")
        result = machine.activate(COMPANY, 2, "restore")
        assert result.error_kind == ErrorKind.PRECONDITION


class TestAcceptTriage:

    @pytest.fixture
    def triage_item(self, ingest, classifier, fields):
        classifier.responses["scan.pdf"] = fields(status="irrelevant")
        ingest(("t1", "scan.pdf"))

    @pytest.mark.parametrize("relevance", ["Yes", "No"])
    def test_promotes_to_active_as_outflow(self, machine, triage_item, driver, store, relevance):
        triage = store.get_row(COMPANY, "buffer2", 1)
        result = machine.accept_triage(COMPANY, 1, relevance)

        assert result.ok
        assert result.status == relevance
        assert names_in(driver, BUFFER2) == []
        assert names_in(driver, ACTIVE) == [NAME]
        assert names_in(driver, OUTFLOW) == [NAME]

        [record] = store.read_all(COMPANY, "buffer")
        assert record.status == STATUS_ACTIVE
        assert record.invoice_status == "outflow"
        assert record.unique_id == triage.unique_id
        assert record.reason == f"Accepted from triage (relevance {relevance})"
        assert_logs_match_status(store, record.row_id)
        [main] = store.read_all(COMPANY, "main")
        assert (main.vendor_name, main.invoice_number, main.amount) == ("Acme", "INV-1", "100.00")

        updated = store.get_row(COMPANY, "buffer2", 1)
        assert updated.relevance == relevance
        assert updated.storage_ref == record.storage_ref

    def test_custom_reason(self, machine, triage_item, store):
        machine.accept_triage(COMPANY, 1, "Yes", reason="checked by hand")
        assert store.read_all(COMPANY, "buffer")[0].reason == "checked by hand"

    def test_decided_once(self, machine, triage_item):
        machine.accept_triage(COMPANY, 1, "Yes")
        assert machine.accept_triage(COMPANY, 1, "No").error_kind == ErrorKind.PRECONDITION

    def test_invalid_relevance(self, machine, triage_item):
        assert machine.accept_triage(COMPANY, 1, "Maybe").error_kind == ErrorKind.VALIDATION

    def test_active_name_becomes_duplicate(self, machine, ingest, classifier, fields, driver, store):
        ingest(("m1", "invoice.pdf"))
        classifier.responses["scan.pdf"] = fields(status="irrelevant")
        ingest(("t1", "scan.pdf"))

        result = machine.accept_triage(COMPANY, 1, "Yes")

        assert result.ok
        assert names_in(driver, ACTIVE) == [NAME]
        assert names_in(driver, DELETED) == [NAME]
        original, duplicate = store.read_all(COMPANY, "buffer")
        assert duplicate.repeated_ref == original.row_id
        assert duplicate.archived_ref == f"{DELETED}/{NAME}"
        assert len(store.read_all(COMPANY, "main")) == 1

    def test_missing_file(self, machine, triage_item, store, temp_dir):
        os.remove(os.path.join(temp_dir, BUFFER2, NAME))
        result = machine.accept_triage(COMPANY, 1, "Yes")
        assert result.error_kind == ErrorKind.NOT_FOUND
        assert store.get_row(COMPANY, "buffer2", 1).storage_ref == REF_NOT_FOUND
        assert store.get_row(COMPANY, "buffer2", 1).relevance == ""

    def test_move_failure_is_recorded_on_the_triage_row(self, machine, triage_item, driver, store,
                                                         monkeypatch):
        def broken_move(file, dest_folder):
            raise StorageError("quota exceeded")

        monkeypatch.setattr(driver, "move_file", broken_move)
        result = machine.accept_triage(COMPANY, 1, "Yes")

        assert result.error_kind == ErrorKind.TRANSIENT_IO
        record = store.get_row(COMPANY, "buffer2", 1)
        assert record.relevance == ""
        assert "quota exceeded" in record.last_error
        assert store.read_all(COMPANY, "buffer") == []

    def test_stale_reference_found_by_name(self, machine, triage_item, store):
        store.update_row(COMPANY, "buffer2", 1, storage_ref="gone/elsewhere.pdf")
        assert machine.accept_triage(COMPANY, 1, "Yes").ok


class TestFieldChanged:

    def test_status_edit_dispatches_delete(self, machine, ingest, store):
        ingest(("m1", "invoice.pdf"))
        result = machine.on_field_changed(FieldChange(
            company=COMPANY, log_kind="buffer", row_id=1, field="status",
            old_value=STATUS_ACTIVE, new_value=STATUS_DELETE, reason="wrong company"))
        assert result.ok
        assert store.get_row(COMPANY, "buffer", 1).status == STATUS_DELETE

    def test_relevance_edit_dispatches_triage(self, machine, ingest, classifier, fields):
        classifier.default = fields(status="irrelevant")
        ingest(("t1", "scan.pdf"))
        result = machine.on_field_changed(FieldChange(
            company=COMPANY, log_kind="buffer2", row_id=1, field="relevance",
            old_value="", new_value="No"))
        assert result.ok

    def test_other_fields_are_ignored(self, machine):
        result = machine.on_field_changed(FieldChange(
            company=COMPANY, log_kind="buffer", row_id=1, field="reason",
            old_value="a", new_value="b"))
        assert result.error_kind == ErrorKind.VALIDATION
        assert result.status == "a"

    def test_unknown_company_and_row(self, machine):
        assert machine.delete("Nobody", 1, "x").error_kind == ErrorKind.VALIDATION
        assert machine.delete(COMPANY, 42, "x").error_kind == ErrorKind.NOT_FOUND

    def test_lock_timeout_propagates(self, ctx, machine, ingest):
        ingest(("m1", "invoice.pdf"))
        with ctx.locks.hold(COMPANY):
            with pytest.raises(LockTimeoutError):
                machine.delete(COMPANY, 1, "x")
