"""Tests for repair_json()."""

import pytest

from models import ClassifierError, repair_json


class TestRepairJson:

    def test_plain_json(self):
        assert repair_json('{"vendorName": "Acme"}') == {"vendorName": "Acme"}

    def test_code_fences_and_prose(self):
        text = 'Here you go:\n```json\n{"amount": "10.00"}\n```\nThanks'
        assert repair_json(text) == {"amount": "10.00"}

    def test_trailing_commas(self):
        assert repair_json('{"a": 1, "b": [1, 2,],}') == {"a": 1, "b": [1, 2]}

    def test_single_quotes_and_literals(self):
        parsed = repair_json("{'isFinancialDocument': true, 'gst': null, 'vendorName': 'Acme'}")
        assert parsed == {"isFinancialDocument": True, "gst": None, "vendorName": "Acme"}

    @pytest.mark.parametrize("text", ["", "   ", "no braces here", "[1, 2, 3]", "{not: valid: at all}"])
    def test_unrecoverable(self, text):
        with pytest.raises(ClassifierError):
            repair_json(text)
