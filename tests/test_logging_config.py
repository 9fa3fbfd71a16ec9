"""Tests for logging setup and credential masking."""

import logging

from common.logging_config import SensitiveDataFilter, setup_logging


def make_record(msg, args=None):
    return logging.LogRecord('test', logging.INFO, __file__, 1, msg, args, None)


def test_masks_bearer_token_in_message():
    record = make_record('Sending Authorization: Bearer abc.def.ghi')

    SensitiveDataFilter().filter(record)

    assert 'abc.def.ghi' not in record.msg
    assert '***MASKED***' in record.msg


def test_masks_api_key_in_args():
    record = make_record('config %s', ('api_key=secret123',))

    SensitiveDataFilter().filter(record)

    assert record.args == ('api_key=***MASKED***',)


def test_leaves_plain_messages_alone():
    record = make_record('Chunk 3 uploaded [session_id=sess-1]')

    SensitiveDataFilter().filter(record)

    assert record.msg == 'Chunk 3 uploaded [session_id=sess-1]'


def test_setup_logging_is_idempotent():
    logger = setup_logging('test-component', log_level='DEBUG')
    again = setup_logging('test-component', log_level='ERROR')

    assert logger is again
    assert len(logger.handlers) == 1
    assert logger.level == logging.ERROR
    assert logger.propagate is False
