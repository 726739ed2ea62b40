"""Shared fixtures: a temp LocalDriver docstore, an in-memory log store,
a scripted classifier and a run context wired to all of them."""

import shutil
import tempfile
from datetime import date, datetime

import pytest

from mail import MailAttachment, MailMessage
from models import Classifier, ClassifierError
from storage import LocalDriver
from workflows import LogStore, RunContext

COMPANY = "Acme Corp"
COMPANY_ROOT = "acme"
TODAY = date(2024, 6, 15)


class FakeClassifier(Classifier):
    """Returns scripted responses keyed by filename.

    A response that is an exception instance is raised instead; filenames
    without a script fall back to ``default``.
    """

    def __init__(self, responses=None, default=None):
        self.responses = dict(responses or {})
        self.default = default
        self.calls = []

    @property
    def name(self) -> str:
        return "fake"

    def classify(self, data, mime_type, filename):
        self.calls.append(filename)
        response = self.responses.get(filename, self.default)
        if isinstance(response, Exception):
            raise response
        if response is None:
            raise ClassifierError(f"no scripted response for {filename}")
        return dict(response)


def invoice_fields(vendor="Acme", invoice="INV-1", amount="100.00",
                   invoice_date="2024-05-01", status="outflow"):
    return {
        "date": invoice_date,
        "vendorName": vendor,
        "invoiceNumber": invoice,
        "amount": amount,
        "invoiceStatus": status,
    }


@pytest.fixture
def temp_dir():
    dir_path = tempfile.mkdtemp(prefix="billsort_test_")
    yield dir_path
    shutil.rmtree(dir_path, ignore_errors=True)


@pytest.fixture
def driver(temp_dir):
    return LocalDriver(temp_dir)


@pytest.fixture
def store():
    log_store = LogStore(":memory:")
    yield log_store
    log_store.close()


@pytest.fixture
def lock_dir():
    dir_path = tempfile.mkdtemp(prefix="billsort_locks_")
    yield dir_path
    shutil.rmtree(dir_path, ignore_errors=True)


@pytest.fixture
def classifier():
    return FakeClassifier(default=invoice_fields())


@pytest.fixture
def ctx(driver, store, classifier, lock_dir):
    return RunContext.create(
        driver=driver,
        store=store,
        companies={COMPANY: COMPANY_ROOT},
        classifier=classifier,
        lock_timeout=0.2,
        lock_dir=lock_dir,
        today=lambda: TODAY,
        classifier_sleep=lambda seconds: None,
    )


@pytest.fixture
def fields():
    """Factory for classifier responses."""
    return invoice_fields


@pytest.fixture
def make_message():
    """Factory for messages with PDF attachments named by the caller."""
    def factory(message_id, *names, data=b"%PDF-1.4 test bill", sent=datetime(2024, 5, 2, 9, 30)):
        return MailMessage(
            message_id=message_id,
            subject=f"Bill {message_id}",
            sender="billing@vendor.example",
            date=sent,
            attachments=[
                MailAttachment(name=name, data=data, mime_type="application/pdf",
                               attachment_id=f"{message_id}-{i}")
                for i, name in enumerate(names)
            ],
        )
    return factory
