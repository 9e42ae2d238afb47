import os
import traceback

import boto3
import botocore.config

from redrive.action.handler import RequeueHandler

region = os.environ.get('awsRegion', 'ap-southeast-2')

sqs_config = botocore.config.Config(max_pool_connections=32, connect_timeout=10, read_timeout=30)
sqs_client = boto3.client('sqs', config=sqs_config, region_name=region)

ddb_table = None
if os.environ.get('tableName'):
    ddb_config = botocore.config.Config(connect_timeout=10, read_timeout=30)
    ddb_resource = boto3.resource('dynamodb', config=ddb_config, region_name=region)
    ddb_table = ddb_resource.Table(os.environ['tableName'])

debug = os.environ.get('debugEnabled', 'No') == 'Yes'

config = {
    'source_queue': os.environ.get('sourceQueueURL'),
    'target_queue': os.environ.get('targetQueueURL'),
    'batch_size': int(os.environ.get('batchSize', '32')),
    'max_batches': int(os.environ['maxBatches']) if os.environ.get('maxBatches') else None,
    'workers': int(os.environ.get('workers', '1')),
}

handler = RequeueHandler(sqs_client=sqs_client, ddb_table=ddb_table, config=config, debug=debug)


def lambda_handler(event, context):
    try:
        return handler.handle_request(event)
    except Exception as ex:
        traceback.print_exception(ex)
        raise RuntimeError(f'Failed to handle request: {event}')
