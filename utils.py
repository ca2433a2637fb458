import logging
import secrets
import string

from flask import jsonify
from marshmallow import ValidationError

logger = logging.getLogger(__name__)

UNAUTHORIZED = 'Unauthorized.'

INVITE_CODE_ALPHABET = string.ascii_letters + string.digits


def validate_request_data(schema_class, data, **schema_kwargs):
    """
    統一的輸入驗證

    Returns:
        tuple: (is_valid, data_or_error_message)
    """
    schema = schema_class(**schema_kwargs)
    try:
        validated_data = schema.load(data)
        return True, validated_data
    except ValidationError as err:
        return False, format_validation_errors(err.messages)


def format_validation_errors(messages, prefix=''):
    """把 marshmallow 的巢狀錯誤攤平成 'field: message; ...'"""
    if isinstance(messages, (list, tuple)):
        parts = []
        for item in messages:
            if isinstance(item, (dict, list, tuple)):
                parts.append(format_validation_errors(item, prefix))
            else:
                parts.append(f"{prefix}: {item}" if prefix else str(item))
        return '; '.join(parts)

    if isinstance(messages, dict):
        parts = []
        for field, value in messages.items():
            name = f"{prefix}.{field}" if prefix else str(field)
            parts.append(format_validation_errors(value, name))
        return '; '.join(parts)

    return f"{prefix}: {messages}" if prefix else str(messages)


def data_response(data, status=200):
    return jsonify({'data': data}), status


def error_response(message, status):
    return jsonify({'error': message}), status


def unauthorized():
    return error_response(UNAUTHORIZED, 401)


def generate_invite_code(length):
    return ''.join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length))
