"""
XML-RPC codec for the billing gateway

Responses are parsed once into a tagged-value tree
(int, double, string, boolean, nil, array, struct) and named
fields are projected from that tree. Decoding is pure: inputs are
never mutated and record order follows the source document.
"""
import logging
import math
import xml.etree.ElementTree as ET
from collections import namedtuple
from decimal import Decimal
from typing import Any, Dict, List, Optional

from telebill.exceptions import GatewayDecodeError, GatewayFault

logger = logging.getLogger(__name__)

TaggedValue = namedtuple('TaggedValue', ['tag', 'value'])

SCALAR_TAGS = ('int', 'double', 'string', 'boolean', 'nil')
INT_ALIASES = ('int', 'i4', 'i8')
# Some gateway builds emit <n> instead of <name> inside struct members
MEMBER_NAME_TAGS = ('name', 'n')

# Defaults for fields the gateway omits, per array member name
RECORD_DEFAULTS = {
    'cdrs': {
        'cost': '0',
        'duration': 0,
        'result': 0,
        'connect_time': '',
        'cli': '',
        'cld': '',
        'country': '',
        'description': '',
        'payment_currency': '',
    },
    'rates': {
        'prefix': '',
        'country': '',
        'description': '',
        'rate': 0.0,
        'local_rate': 0.0,
    },
    'payments': {
        'amount': 0.0,
        'currency': '',
        'tx_id': '',
        'tx_error': '',
        'tx_result': 0,
        'notes': '',
        'payment_time': '',
    },
}


# =============================================================================
# DECODING
# =============================================================================

def _text(element) -> str:
    return element.text or ''


def _coerce_int(text: str) -> int:
    try:
        return int(text.strip())
    except ValueError:
        return 0


def _coerce_double(text: str) -> float:
    try:
        return float(text.strip())
    except ValueError:
        return 0.0


def parse_value(element) -> TaggedValue:
    """Turn a <value> element into a TaggedValue tree"""
    children = list(element)
    if not children:
        # Untyped <value>text</value> is a string per XML-RPC
        return TaggedValue('string', _text(element))

    typed = children[0]
    tag = typed.tag

    if tag in INT_ALIASES:
        return TaggedValue('int', _coerce_int(_text(typed)))
    if tag == 'double':
        return TaggedValue('double', _coerce_double(_text(typed)))
    if tag == 'boolean':
        return TaggedValue('boolean', _text(typed).strip().lower() in ('1', 'true'))
    if tag == 'nil':
        return TaggedValue('nil', None)
    if tag == 'array':
        data = typed.find('data')
        items = [] if data is None else [parse_value(v) for v in data.findall('value')]
        return TaggedValue('array', items)
    if tag == 'struct':
        members = []
        for member in typed.findall('member'):
            name_el = None
            for name_tag in MEMBER_NAME_TAGS:
                name_el = member.find(name_tag)
                if name_el is not None:
                    break
            value_el = member.find('value')
            if name_el is None or value_el is None:
                continue
            members.append((_text(name_el).strip(), parse_value(value_el)))
        return TaggedValue('struct', members)

    # string, dateTime.iso8601, base64 and unknown tags keep their text
    return TaggedValue('string', _text(typed))


def to_native(tagged: TaggedValue) -> Any:
    """Project a TaggedValue tree onto plain Python values"""
    if tagged.tag == 'array':
        return [to_native(item) for item in tagged.value]
    if tagged.tag == 'struct':
        return {name: to_native(value) for name, value in tagged.value}
    return tagged.value


def parse_document(raw) -> Optional[TaggedValue]:
    """
    Parse raw response text into the tagged tree of its top-level value.
    Raises GatewayFault for fault envelopes.
    """
    if isinstance(raw, bytes):
        raw = raw.decode('utf-8', errors='replace')
    if not isinstance(raw, str) or not raw.strip():
        raise GatewayDecodeError('Empty gateway response', raw if isinstance(raw, str) else None)

    try:
        root = ET.fromstring(raw.strip())
    except ET.ParseError as e:
        raise GatewayDecodeError(f"Malformed XML-RPC response: {e}", raw)

    if root.tag == 'value':
        return parse_value(root)
    if root.tag != 'methodResponse':
        raise GatewayDecodeError(f"Unexpected root element <{root.tag}>", raw)

    fault = root.find('fault')
    if fault is not None:
        value_el = fault.find('value')
        fields = to_native(parse_value(value_el)) if value_el is not None else {}
        if not isinstance(fields, dict):
            fields = {}
        fault_code = fields.get('faultCode', 0)
        if not isinstance(fault_code, int) or isinstance(fault_code, bool):
            fault_code = _coerce_int(str(fault_code))
        fault_string = fields.get('faultString') or 'Unknown error'
        logger.warning(f"Gateway fault {fault_code}: {fault_string}")
        raise GatewayFault(fault_code, str(fault_string))

    value_el = root.find('params/param/value')
    if value_el is None:
        return None
    return parse_value(value_el)


def decode_response(raw) -> Any:
    """
    Decode a gateway response into native values.
    Already-structured input (dict/list) is returned unchanged.
    """
    if isinstance(raw, (dict, list)):
        return raw
    tree = parse_document(raw)
    return None if tree is None else to_native(tree)


def decode_records(raw, array_name: str, kind: str = None) -> List[Dict[str, Any]]:
    """
    Decode the struct entries of a named array member.

    Missing fields are filled with the defaults registered for ``kind``
    (defaults to ``array_name``). A response without the array yields [].
    """
    decoded = decode_response(raw)
    if isinstance(decoded, list):
        entries = decoded
    elif isinstance(decoded, dict):
        entries = decoded.get(array_name)
    else:
        entries = None
    if not isinstance(entries, list):
        return []

    defaults = RECORD_DEFAULTS.get(kind or array_name, {})
    records = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry:
            continue
        record = dict(defaults)
        record.update(entry)
        records.append(record)
    return records


# =============================================================================
# ENCODING
# =============================================================================

def _build_value(value) -> ET.Element:
    element = ET.Element('value')
    if value is None:
        ET.SubElement(element, 'nil')
    elif isinstance(value, bool):
        ET.SubElement(element, 'boolean').text = '1' if value else '0'
    elif isinstance(value, int):
        ET.SubElement(element, 'int').text = str(value)
    elif isinstance(value, (float, Decimal)):
        number = float(value)
        if math.isnan(number) or math.isinf(number):
            raise ValueError(f"Cannot encode non-finite number {value!r}")
        ET.SubElement(element, 'double').text = repr(number)
    elif isinstance(value, str):
        ET.SubElement(element, 'string').text = value
    elif isinstance(value, (list, tuple)):
        data = ET.SubElement(ET.SubElement(element, 'array'), 'data')
        for item in value:
            data.append(_build_value(item))
    elif isinstance(value, dict):
        struct = ET.SubElement(element, 'struct')
        for name, item in value.items():
            member = ET.SubElement(struct, 'member')
            ET.SubElement(member, 'name').text = str(name)
            member.append(_build_value(item))
    else:
        ET.SubElement(element, 'string').text = str(value)
    return element


def encode_value(value) -> str:
    return ET.tostring(_build_value(value), encoding='unicode')


def encode_method_call(method: str, params: Dict[str, Any] = None) -> str:
    """Build a methodCall with a single struct parameter, as the gateway expects"""
    call = ET.Element('methodCall')
    ET.SubElement(call, 'methodName').text = method
    param = ET.SubElement(ET.SubElement(call, 'params'), 'param')
    param.append(_build_value(params or {}))
    return '<?xml version="1.0"?>\n' + ET.tostring(call, encoding='unicode')


def encode_method_response(value) -> str:
    response = ET.Element('methodResponse')
    param = ET.SubElement(ET.SubElement(response, 'params'), 'param')
    param.append(_build_value(value))
    return '<?xml version="1.0"?>\n' + ET.tostring(response, encoding='unicode')


def encode_fault(fault_code: int, fault_string: str) -> str:
    response = ET.Element('methodResponse')
    fault = ET.SubElement(response, 'fault')
    fault.append(_build_value({'faultCode': fault_code, 'faultString': fault_string}))
    return '<?xml version="1.0"?>\n' + ET.tostring(response, encoding='unicode')
