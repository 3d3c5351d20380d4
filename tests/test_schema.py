"""
Record model tests - wire names, unknown field carry-through and date parsing.
"""

import pytest
from datetime import datetime, timedelta, timezone

from corpreg.core.schema import Registration, RenewalPayment, parse_datetime


class TestParseDatetime:

    @pytest.mark.parametrize("raw,expected", [
        ("2025-01-01T10:00:00", datetime(2025, 1, 1, 10)),
        ("2025-01-01T10:00:00Z", datetime(2025, 1, 1, 10)),
        ("2025-01-01T10:00:00+05:00", datetime(2025, 1, 1, 5)),
        ("2025-01-01T02:30:00-03:00", datetime(2025, 1, 1, 5, 30)),
        ("2025-01-01", datetime(2025, 1, 1)),
    ])
    def test_iso_values_become_naive_utc(self, raw, expected):
        parsed = parse_datetime(raw)
        assert parsed == expected
        assert parsed.tzinfo is None

    def test_aware_datetime_converted(self):
        aware = datetime(2025, 1, 1, 10, tzinfo=timezone(timedelta(hours=5)))
        assert parse_datetime(aware) == datetime(2025, 1, 1, 5)

    @pytest.mark.parametrize("raw", [None, "", "next tuesday"])
    def test_unparsable_is_none(self, raw):
        assert parse_datetime(raw) is None


class TestRegistrationWireForm:

    def test_offset_expire_date_keeps_instant(self):
        record = Registration.from_dict({"id": "r", "expireDate": "2025-06-30T23:00:00-02:00"})
        assert record.expire_date == datetime(2025, 7, 1, 1)
        assert record.to_dict()["expireDate"] == "2025-07-01T01:00:00"

    def test_unknown_keys_round_trip(self):
        record = Registration.from_dict({"_id": "r", "currentStage": "documentation", "customField": [1, 2]})
        assert record.id == "r"
        assert record.payload == {"customField": [1, 2]}
        assert record.to_dict()["customField"] == [1, 2]

    def test_company_details_approved_alias(self):
        record = Registration.from_dict({"id": "r", "companyDetailsApproved": True})
        assert record.details_approved is True
        assert record.to_dict()["companyDetailsApproved"] is True

    def test_id_required(self):
        with pytest.raises(ValueError):
            Registration.from_dict({"companyName": "Acme"})


def test_renewal_payment_dates_converted():
    payment = RenewalPayment.from_dict({
        "id": "p", "registrationId": "r", "amount": "5000", "approvedAt": "2025-01-01T12:00:00+02:00",
    })
    assert payment.amount == 5000.0
    assert payment.approved_at == datetime(2025, 1, 1, 10)
