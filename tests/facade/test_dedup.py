import pytest
from pytest import fixture

from redrive.facade.dedup import Deduplicator
from tests.monkey.dynamodb import MonkeyPatchTable
from tests.monkey.sqs import client_error

RECORD = {'messageId': 'abc', 'eventSourceARN': 'arn:aws:sqs:ap-southeast-2:123456789012:trigger'}


class FailingTableStub(MonkeyPatchTable):
    """Fail every write with the given error"""

    def __init__(self, error):
        super().__init__()
        self.error = error

    def put_item(self, **kwargs):
        raise self.error

    def delete_item(self, **kwargs):
        raise self.error


class TestCase:

    @fixture(autouse=True)
    def now(self):
        return [1_700_000_000]

    @fixture(autouse=True)
    def table(self):
        return MonkeyPatchTable()

    @fixture(autouse=True)
    def dedup(self, table, now):
        return Deduplicator(ddb_table=table, log=lambda *args: None, clock=lambda: now[0])

    def test_second_claim_is_refused(self, dedup, table, now):
        assert dedup.claim(RECORD)
        assert not dedup.claim(RECORD)
        item = table.items[('X:SQS:' + RECORD['eventSourceARN'], 'abc')]
        assert item['TTL'] == now[0] + 15 * 60

    def test_release_allows_a_new_claim(self, dedup, table):
        assert dedup.claim(RECORD)
        assert dedup.release(RECORD)
        assert table.items == {}
        assert dedup.claim(RECORD)

    def test_expired_claim_is_taken_over(self, dedup, table, now):
        assert dedup.claim(RECORD)
        now[0] += 15 * 60 + 1
        assert dedup.claim(RECORD)
        assert list(table.items.values())[0]['TTL'] == now[0] + 15 * 60

    def test_claims_are_per_record(self, dedup):
        assert dedup.claim(RECORD)
        assert dedup.claim(dict(RECORD, messageId='def'))
        assert dedup.claim(dict(RECORD, eventSourceARN='arn:aws:sqs:ap-southeast-2:123456789012:other'))

    def test_without_table_everything_is_claimed(self):
        dedup = Deduplicator(ddb_table=None)
        assert dedup.claim(RECORD)
        assert dedup.claim(RECORD)
        assert dedup.release(RECORD)

    def test_unexpected_write_error_propagates(self):
        error = client_error('ProvisionedThroughputExceededException', 'PutItem', sender=False)
        dedup = Deduplicator(ddb_table=FailingTableStub(error), log=lambda *args: None)
        with pytest.raises(Exception) as info:
            dedup.claim(RECORD)
        assert info.value is error

    def test_failed_release_is_reported(self):
        error = client_error('ProvisionedThroughputExceededException', 'DeleteItem', sender=False)
        dedup = Deduplicator(ddb_table=FailingTableStub(error), log=lambda *args: None)
        assert not dedup.release(RECORD)
