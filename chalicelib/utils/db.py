import functools
import os
from random import uniform
from time import sleep

import boto3 as boto3
from botocore.exceptions import BotoCoreError, ClientError, ConnectionError as BotoConnectionError, HTTPClientError

from chalicelib.utils import data, exceptions
from chalicelib.utils.boto_clients import aws_config_ddb
from chalicelib.utils.logger import logger, log_exception

# For safe db operations
RETRY_EXCEPTIONS = ('ProvisionedThroughputExceededException', 'ThrottlingException')
TRANSIENT_EXCEPTIONS = ('InternalServerError', 'ServiceUnavailable', 'RequestLimitExceeded')
CONDITION_FAILED = 'ConditionalCheckFailedException'
need_return_capacity = ('put_item', 'get_item', 'update_item', 'delete_item', 'scan')

_TABLES = {}


def error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', '')


def exp_db_backoff(func):
    """
        should be used for any atomic
        get/put item in the code
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger.debug(f'{func.__name__}:: args={args}, kwargs={kwargs}')
        max_retries = 5
        timeout_seed = uniform(0.01, 0.05)

        if func.__name__ not in need_return_capacity:
            raise RuntimeError("This decorator only for DynamoDB methods")
        kwargs.update({'ReturnConsumedCapacity': 'TOTAL'})

        for retries in range(max_retries):
            try:
                result = func(*args, **kwargs)
                logger.info(f'{func.__name__}:: SUCCESS')

                return result

            except ClientError as e:
                if error_code(e) == CONDITION_FAILED:
                    # caller decides what a failed condition means
                    raise
                if error_code(e) in RETRY_EXCEPTIONS:
                    logger.warning(f'{func.__name__}:: throttled, {retries=}')
                    sleep(timeout_seed * (2 ** retries))
                    continue
                log_exception(e, msg=f'Got exception while trying to {func.__name__}: ', status_code=500)
                failure = exceptions.TransientStorageFailure if error_code(e) in TRANSIENT_EXCEPTIONS \
                    else exceptions.StorageFailed
                raise failure(f'{func.__name__} failed: {error_code(e)}') from e
            except (BotoConnectionError, HTTPClientError) as e:
                log_exception(e, msg=f'Lost connection while trying to {func.__name__}: ', status_code=500)
                raise exceptions.TransientStorageFailure(f'{func.__name__} failed: {e}') from e
            except BotoCoreError as e:
                log_exception(e, msg=f'Got exception while trying to {func.__name__}: ', status_code=500)
                raise exceptions.StorageFailed(f'{func.__name__} failed: {e}') from e

        raise exceptions.NumberOfRetriesExceeded(
            f"MaxNumber={max_retries} of DB retries has exceeded"
        )

    return wrapper


def wrap_table(gl_table):
    gl_table.put_item = exp_db_backoff(gl_table.put_item)
    gl_table.get_item = exp_db_backoff(gl_table.get_item)
    gl_table.update_item = exp_db_backoff(gl_table.update_item)
    gl_table.delete_item = exp_db_backoff(gl_table.delete_item)
    gl_table.scan = exp_db_backoff(gl_table.scan)
    return gl_table


def get_table(table_env_name: str) -> boto3.session.Session.resource:
    table_name = os.environ.get(table_env_name)
    if not table_name:
        raise exceptions.UpstreamUnavailable(f'{table_env_name} is not configured')

    gl_table = _TABLES.get(table_name)
    if gl_table is None:
        try:
            if os.environ.get('ENDPOINT_URL'):
                gl_table = boto3.resource('dynamodb', endpoint_url=os.environ.get('ENDPOINT_URL'),
                                          config=aws_config_ddb).Table(table_name)
            else:
                gl_table = boto3.resource('dynamodb', config=aws_config_ddb).Table(table_name)
        except BotoCoreError as e:
            raise exceptions.UpstreamUnavailable(f'DynamoDB is not reachable: {e}') from e

        _TABLES[table_name] = wrap_table(gl_table)

    return gl_table


def put_db_record(table, item: dict, unique_key: str = None):
    kwargs = {'Item': item}
    if unique_key:
        kwargs.update({
            'ConditionExpression': 'attribute_not_exists(#k_0)',
            'ExpressionAttributeNames': {'#k_0': unique_key}
        })
    table.put_item(**kwargs)


def update_db_record(table, key: dict, update_body: dict, allowed_attrs_to_update: list,
                     allowed_attrs_to_delete: list = (), expected: dict = None):
    """
    SET every whitelisted field present in update_body, REMOVE the ones
    allowed to be deleted and holding an empty value.
    expected is a dict of attr -> value the stored item must hold for the write to happen
    """
    set_expr, expr_attr_names, expr_attr_values, remove_expr = generate_update_expression(
        update_body=data.to_db_values(update_body),
        allowed_attrs_to_update=allowed_attrs_to_update,
        allowed_attrs_to_delete=allowed_attrs_to_delete
    )
    update_expr = ' '.join([expr for expr in (set_expr, remove_expr) if expr])
    if not update_expr:
        return None

    condition_expr, condition_names, condition_values = generate_condition_expression(key, expected or {})
    update_item_dict = {
        "Key": key,
        "ReturnValues": "ALL_NEW",
        "UpdateExpression": update_expr,
        "ConditionExpression": condition_expr,
        "ExpressionAttributeNames": {**expr_attr_names, **condition_names},
    }
    if expr_attr_values or condition_values:
        update_item_dict["ExpressionAttributeValues"] = {**expr_attr_values, **condition_values}

    return table.update_item(**update_item_dict).get('Attributes')


def generate_update_expression(update_body: dict, allowed_attrs_to_update: list, allowed_attrs_to_delete: list):
    """
    Generate expressions to update and delete attributes.
    Attribute names go through placeholders, a few of ours (status, name) are reserved words
    """
    expr_attr_names = {}
    expr_attr_values = {}
    set_parts = []
    remove_parts = []
    for field in allowed_attrs_to_update:
        if field not in update_body:
            continue
        field_value = update_body[field]
        empty = field_value is None or field_value in ['', [], {}]
        if empty and field not in allowed_attrs_to_delete:
            continue
        expr_attr_names[f'#{field}'] = field
        if empty:
            remove_parts.append(f'#{field}')
        else:
            expr_attr_values[f':{field}'] = field_value
            set_parts.append(f'#{field} = :{field}')

    set_expr = f"SET {', '.join(set_parts)}" if set_parts else None
    remove_expr = f"REMOVE {', '.join(remove_parts)}" if remove_parts else None
    return set_expr, expr_attr_names, expr_attr_values, remove_expr


def generate_condition_expression(key: dict, expected: dict):
    names = {}
    values = {}
    parts = []
    for i, key_name in enumerate(key):
        names[f'#k_{i}'] = key_name
        parts.append(f'attribute_exists(#k_{i})')
    for i, (attr, value) in enumerate(expected.items()):
        names[f'#c_{i}'] = attr
        values[f':c_{i}'] = value
        parts.append(f'#c_{i} = :c_{i}')
    return ' AND '.join(parts), names, values


def get_db_item(table, key: dict):
    result = table.get_item(Key=key)

    if 'Item' in result:
        return result['Item']
    else:
        logger.debug(f"get_db_item ::: record {key=} not found")
        return None


def delete_db_record(table, key: dict):
    table.delete_item(Key=key)


def scan_items_paginated(table, limit=None, start_key=None):
    kwargs = {}
    if limit:
        kwargs.update({'Limit': int(limit)})

    if start_key:
        kwargs.update({'ExclusiveStartKey': start_key})

    resp = table.scan(**kwargs)
    return resp['Items'], resp.get('LastEvaluatedKey')


def scan_items_paged(table):
    """ This method shall be used whenever you think the scan will
        return more than 1mb of data at once"""
    all_items = []
    items, last_evaluated_key = scan_items_paginated(table)
    all_items.extend(items)

    while last_evaluated_key is not None:
        items, last_evaluated_key = scan_items_paginated(table, start_key=last_evaluated_key)
        all_items.extend(items)

    return all_items
