import signal
import sys
from argparse import ArgumentParser
from threading import Event

import boto3
import botocore.config
import yaml

from redrive.action.drain import DEFAULT_BATCH_SIZE
from redrive.action.session import OUTCOME_COMPLETED, RequeueSession
from redrive.errors import ConfigurationError
from redrive.facade.sqs import SQS


def build_parser():
    parser = ArgumentParser(description='Redrive an SQS queue into another')
    parser.add_argument('-p', '--profile', required=True)
    parser.add_argument('-s', '--source-queue', required=True, help='queue name or URL to drain')
    parser.add_argument('-t', '--target-queue', required=True, help='queue name or URL to fill')
    parser.add_argument('-r', '--region', default='ap-southeast-2')
    parser.add_argument('-b', '--batch-size', type=int, default=DEFAULT_BATCH_SIZE)
    parser.add_argument('-m', '--max-batches', type=int, default=None)
    parser.add_argument('-w', '--workers', type=int, default=1)
    parser.add_argument('--wait-time', type=int, default=1, help='receive long poll seconds')
    parser.add_argument('--dry-run', action='store_true', help='count the messages without moving them')
    parser.add_argument('--debug', action='store_true')
    return parser


def main(argv=None, session_factory=boto3.session.Session):
    args = build_parser().parse_args(argv)

    session = session_factory(region_name=args.region, profile_name=args.profile)
    sqs_config = botocore.config.Config(max_pool_connections=max(10, args.workers), connect_timeout=10, read_timeout=30)
    sqs = SQS(sqs_client=session.client('sqs', config=sqs_config))

    cancel = Event()
    try:
        requeue = RequeueSession(
            source=sqs.queue(args.source_queue, wait_time_seconds=args.wait_time),
            destination=sqs.queue(args.target_queue),
            batch_size=args.batch_size, max_batches=args.max_batches, dry_run=args.dry_run,
            workers=args.workers, cancel=cancel, debug=args.debug
        )
    except ConfigurationError as ex:
        print(f'Invalid arguments: {ex}', file=sys.stderr)
        return 2

    # first Ctrl-C finishes the in-flight messages then stops
    previous = signal.signal(signal.SIGINT, lambda _signum, _frame: cancel.set())
    try:
        result = requeue.run()
    finally:
        signal.signal(signal.SIGINT, previous)
    print(yaml.dump(requeue.summary_event(), default_flow_style=False, sort_keys=False))
    return 0 if result.outcome == OUTCOME_COMPLETED else 1


if __name__ == '__main__':
    sys.exit(main())
