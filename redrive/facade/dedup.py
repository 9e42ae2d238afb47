import time
import traceback
from typing import Callable, Dict, Optional, Tuple

from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

DEFAULT_WINDOW_SECONDS = 15 * 60


class Deduplicator:
    """
    Remember which trigger records have been handled, in a DynamoDB table keyed by PK/SK.

    A claim lives for window_seconds. An expired claim can be taken over, so a
    trigger redelivered long after the first attempt still runs.
    """

    def __init__(self, ddb_table, log: Callable = print, window_seconds=DEFAULT_WINDOW_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.ddb = ddb_table
        self._log = log
        self.window_seconds = window_seconds
        self.clock = clock

    @staticmethod
    def _key(record: Dict) -> Tuple[str, str]:
        return f'X:SQS:{record["eventSourceARN"]}', str(record['messageId'])

    def claim(self, record: Dict) -> bool:
        """True when this record has not been seen within the window"""
        if self.ddb is None:
            return True
        pk, sk = self._key(record)
        now = int(self.clock())
        item = {'PK': pk, 'SK': sk, 'TTL': now + self.window_seconds}
        try:
            self.ddb.put_item(Item=item, ConditionExpression=Attr('SK').not_exists())
            return True
        except ClientError as ex:
            if ex.response.get('Error', {}).get('Code') != 'ConditionalCheckFailedException':
                raise
        existing: Optional[Dict] = self.ddb.get_item(Key={'PK': pk, 'SK': sk}, ConsistentRead=True)
        expires = (existing or {}).get('Item', {}).get('TTL')
        if expires is not None and int(expires) > now:
            self._log(f'Record {sk} from {pk} was already handled')
            return False
        self.ddb.put_item(Item=item)
        self._log(f'Took over expired claim for record {sk} from {pk}')
        return True

    def release(self, record: Dict) -> bool:
        """Forget a claim so a redelivered record is handled again"""
        if self.ddb is None:
            return True
        pk, sk = self._key(record)
        try:
            self.ddb.delete_item(Key={'PK': pk, 'SK': sk})
            return True
        except ClientError as ex:
            self._log(f'Failed to release claim for record {sk} from {pk}')
            traceback.print_exception(ex)
            return False
