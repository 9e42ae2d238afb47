import json

import pytest
from pytest import fixture

import tests.monkey.patch as monkey_patch
from tests.monkey.sqs import MySQS

environ = {
    'awsRegion': 'ap-southeast-2',
    'sourceQueueURL': MySQS.queue_url('orders-dlqueue'),
    'targetQueueURL': MySQS.queue_url('orders'),
    'tableName': 'redrive-dedup',
    'batchSize': '32',
}


def record(body: str, message_id='record-1'):
    return {
        'eventSource': 'aws:sqs',
        'eventSourceARN': 'arn:aws:sqs:ap-southeast-2:123456789012:redrive-trigger',
        'messageId': message_id,
        'body': body,
    }


class TestCase:

    @fixture(autouse=True)
    def lambda_handler(self):
        monkey_patch.patch.patch(environ=environ)
        for n in range(1, 4):
            monkey_patch.patch.mysqs.get_queue('orders-dlqueue').put_message(f'm{n}')
        from redrive.handler.requeue import lambda_handler
        return lambda_handler

    @fixture(autouse=True)
    def mysqs(self):
        return monkey_patch.patch.mysqs

    def test_requeue_event(self, lambda_handler, mysqs):
        result = lambda_handler({'run_type': 'Requeue'}, {})
        assert result['outcome'] == 'COMPLETED'
        assert result['moved'] == 3
        assert mysqs.get_queue('orders').bodies() == ['m1', 'm2', 'm3']
        assert len(mysqs.get_queue('orders-dlqueue')) == 0

    def test_requeue_record_with_yaml_body(self, lambda_handler, mysqs):
        results = lambda_handler({'Records': [record('run_type: Requeue\nbatch_size: 2\n')]}, {})
        assert len(results) == 1
        assert results[0]['moved'] == 3
        assert results[0]['batches'] == 2

    def test_requeue_record_with_json_body(self, lambda_handler, mysqs):
        body = json.dumps({'run_type': 'Requeue', 'dry_run': True})
        results = lambda_handler({'Records': [record(body)]}, {})
        assert results[0]['dry_run'] is True
        assert results[0]['observed'] == 3
        assert results[0]['moved'] == 0
        assert len(mysqs.get_queue('orders')) == 0
        assert len(mysqs.get_queue('orders-dlqueue')) == 3

    def test_duplicate_record_is_skipped(self, lambda_handler, mysqs):
        body = 'run_type: Requeue\n'
        results = lambda_handler({'Records': [record(body), record(body)]}, {})
        assert len(results) == 1
        assert len(monkey_patch.patch.table().items) == 1

    def test_other_event_sources_are_ignored(self, lambda_handler, mysqs):
        results = lambda_handler({'Records': [{'eventSource': 'aws:s3'}]}, {})
        assert results == []
        assert len(mysqs.get_queue('orders-dlqueue')) == 3

    def test_queue_names_in_event(self, lambda_handler, mysqs):
        mysqs.get_queue('billing-dlqueue').put_message('b1')
        event = {'run_type': 'Requeue', 'source_queue': 'billing-dlqueue', 'target_queue': 'billing'}
        result = lambda_handler(event, {})
        assert result['moved'] == 1
        assert mysqs.get_queue('billing').bodies() == ['b1']
        assert len(mysqs.get_queue('orders-dlqueue')) == 3

    def test_max_batches_from_event(self, lambda_handler, mysqs):
        result = lambda_handler({'run_type': 'Requeue', 'batch_size': 1, 'max_batches': 2}, {})
        assert result['outcome'] == 'ABORTED'
        assert result['moved'] == 2

    def test_partial_failure(self, lambda_handler, mysqs):
        monkey_patch.patch.sqs().reject_bodies.add('m2')
        result = lambda_handler({'run_type': 'Requeue'}, {})
        assert result['outcome'] == 'COMPLETED_WITH_PARTIAL_FAILURES'
        assert result['failed'] == 1
        assert mysqs.get_queue('orders-dlqueue').bodies() == ['m2']

    def test_describe(self, lambda_handler, mysqs):
        result = lambda_handler({'run_type': 'Describe'}, {})
        assert result[MySQS.queue_url('orders-dlqueue')]['Total'] == 3
        assert result[MySQS.queue_url('orders')]['Total'] == 0

    def test_same_queue_fails(self, lambda_handler, mysqs):
        event = {'run_type': 'Requeue', 'target_queue': MySQS.queue_url('orders-dlqueue')}
        with pytest.raises(RuntimeError):
            lambda_handler(event, {})
        assert len(mysqs.get_queue('orders-dlqueue')) == 3
        assert monkey_patch.patch.sqs().calls('receive_message') == []

    def test_unknown_run_type_undoes_duplicate_check(self, lambda_handler, mysqs):
        with pytest.raises(RuntimeError):
            lambda_handler({'Records': [record('run_type: Unknown\n')]}, {})
        assert monkey_patch.patch.table().items == {}
