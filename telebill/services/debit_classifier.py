"""
Debit result classification

The gateway reports debit outcomes in several shapes. Each recognised
success shape is a named predicate; rules are evaluated in order and the
first match wins. A result no rule accepts is a failure.
"""
import re
import time
from collections import namedtuple
from typing import Any, Callable, Dict, List, Optional, Tuple

SUCCESS_TOKENS = ('success', '1', 'OK', 'ok')
FAILURE_TOKENS = ('failed', 'error')
DEFAULT_FAILURE_REASON = 'Insufficient funds'

SUSPENSION_PATTERN = re.compile(r'insufficient|balance', re.IGNORECASE)

DebitOutcome = namedtuple('DebitOutcome', ['success', 'rule', 'transaction_id', 'failure_reason'])


def _error_text(result: Dict[str, Any]) -> str:
    for key in ('error', 'tx_error'):
        value = result.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return ''


def _transaction_id(result: Dict[str, Any]) -> Optional[str]:
    for key in ('tx_id', 'payment_id', 'i_payment'):
        value = result.get(key)
        if value not in (None, '', 0):
            return str(value)
    return None


def result_is_success_token(result: Dict[str, Any]) -> bool:
    value = result.get('result')
    if isinstance(value, bool):
        return False
    return value in SUCCESS_TOKENS or value == 1


def tx_result_is_one(result: Dict[str, Any]) -> bool:
    value = result.get('tx_result')
    if isinstance(value, bool):
        return False
    return value == 1 or value == '1'


def has_transaction_id_without_error(result: Dict[str, Any]) -> bool:
    return _transaction_id(result) is not None and not _error_text(result)


def unrecognised_non_error_result(result: Dict[str, Any]) -> bool:
    # Catch-all; a new failure shape reported as a plain result would pass here
    value = result.get('result')
    if value in (None, '', 0, False):
        return False
    if _error_text(result):
        return False
    return value not in FAILURE_TOKENS


DEBIT_SUCCESS_RULES: List[Tuple[str, Callable[[Dict[str, Any]], bool]]] = [
    ('result_success_token', result_is_success_token),
    ('tx_result_one', tx_result_is_one),
    ('transaction_id_without_error', has_transaction_id_without_error),
    ('non_error_result', unrecognised_non_error_result),
]


def classify_debit_result(result: Any, now_ms: int = None) -> DebitOutcome:
    """
    Classify a decoded accountDebit result.

    Success carries the gateway transaction id (tx_id, payment_id,
    i_payment) or a synthesized ``debit_<epoch-ms>``. Failure carries the
    gateway's error text, falling back to "Insufficient funds".
    """
    if not isinstance(result, dict):
        result = {'result': result}

    for name, rule in DEBIT_SUCCESS_RULES:
        if rule(result):
            transaction_id = _transaction_id(result)
            if transaction_id is None:
                if now_ms is None:
                    now_ms = int(time.time() * 1000)
                transaction_id = f"debit_{now_ms}"
            return DebitOutcome(True, name, transaction_id, None)

    return DebitOutcome(False, None, None, _error_text(result) or DEFAULT_FAILURE_REASON)


def should_suspend(failure_reason: Optional[str]) -> bool:
    """Only balance-related failures suspend the number"""
    return bool(failure_reason) and SUSPENSION_PATTERN.search(failure_reason) is not None
