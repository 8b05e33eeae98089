"""
Document numbering tests.
"""

import re
from datetime import datetime

from fulfillment.models import DocumentSequence
from fulfillment.services import sequence_service


ORDER_NUMBER = re.compile(r"^ORD-20261018-(\d{5})-[0-9A-Z]{3}$")


class TestSequenceNumbers:

    def test_order_number_format_and_increment(self, db_session):
        day = datetime(2026, 10, 18, 9, 30)
        first = sequence_service.next_order_number(day)
        second = sequence_service.next_order_number(day)
        db_session.commit()

        assert ORDER_NUMBER.match(first).group(1) == "00001"
        assert ORDER_NUMBER.match(second).group(1) == "00002"

    def test_receipt_numbers_have_their_own_counter(self, db_session):
        day = datetime(2026, 10, 18)
        sequence_service.next_order_number(day)
        assert sequence_service.next_receipt_number(day) == "RCP-20261018-00001"
        assert sequence_service.next_receipt_number(day) == "RCP-20261018-00002"

    def test_counter_resets_per_day(self, db_session):
        assert sequence_service.next_receipt_number(datetime(2026, 10, 18)) == "RCP-20261018-00001"
        assert sequence_service.next_receipt_number(datetime(2026, 10, 19)) == "RCP-20261019-00001"

    def test_rolled_back_numbers_are_reused(self, db_session):
        day = datetime(2026, 10, 18)
        sequence_service.next_receipt_number(day)
        db_session.rollback()

        assert sequence_service.next_receipt_number(day) == "RCP-20261018-00001"
        db_session.commit()
        assert db_session.query(DocumentSequence).filter_by(document_type="RECEIPT").one().next_number == 2
