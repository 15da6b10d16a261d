import json
import logging
from datetime import datetime

from chalicelib.utils.exceptions import StateConflict, StorageFailed
from chalicelib.utils.logger import logger, log_exception, set_request_id


def logged_payload(record):
    prefix, payload = record.getMessage().split(' : ', 1)
    return prefix, json.loads(payload)


def test_log_exception_follows_error_level(caplog, request):
    set_request_id('request-1')
    request.addfinalizer(lambda: set_request_id(None))

    with caplog.at_level(logging.DEBUG, logger=logger.name):
        log_exception(StateConflict('delivery is taken'), status_code=409, msg='conflict',
                      when=datetime(2024, 1, 2, 3, 4, 5), table=object)
        log_exception(StorageFailed('disk is full'), status_code=500)

    conflict, failure = caplog.records[-2:]
    assert conflict.levelname == 'WARNING'
    assert failure.levelname == 'ERROR'
    prefix, payload = logged_payload(conflict)
    assert prefix == '[request-1]'
    assert payload['exception'] == 'StateConflict'
    assert payload['status_code'] == 409
    assert payload['kwargs'] == {'when': '2024-01-02T03:04:05', 'table': str(object)}


def test_unknown_errors_are_logged_with_traceback(caplog):
    with caplog.at_level(logging.DEBUG, logger=logger.name):
        try:
            raise KeyError('id')
        except KeyError as error:
            log_exception(error, status_code=500)

    record = caplog.records[-1]
    assert record.levelname == 'ERROR'
    assert record.exc_info is not None
    assert logged_payload(record)[1]['level'] == 'exception'
