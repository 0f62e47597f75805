"""
Billing Gateway Client
XML-RPC calls against the prepaid switch (digest-authenticated HTTPS)
"""
import os
import logging
from typing import Any, Callable, Dict, List

import requests
from requests.auth import HTTPDigestAuth
from flask import current_app, has_app_context

from telebill.exceptions import (
    ConfigurationError, GatewayError, GatewayFault,
    GatewayTimeoutError, GatewayTransportError
)
from telebill.utils.xmlrpc import decode_records, decode_response, encode_method_call

logger = logging.getLogger('gateway')

API_PATH = '/xmlapi/xmlapi'


class GatewayConfig:
    """Gateway configuration management"""

    def __init__(self, url=None, username=None, password=None, timeout=None, verify_ssl=None):
        settings = current_app.config if has_app_context() else {}

        self.url = url or settings.get('GATEWAY_URL') or os.getenv('GATEWAY_URL')
        self.username = username or settings.get('GATEWAY_USERNAME') or os.getenv('GATEWAY_USERNAME')
        self.password = password or settings.get('GATEWAY_PASSWORD') or os.getenv('GATEWAY_PASSWORD')
        self.timeout = float(timeout or settings.get('GATEWAY_TIMEOUT') or os.getenv('GATEWAY_TIMEOUT', '60'))
        if verify_ssl is None:
            verify_ssl = settings.get('GATEWAY_VERIFY_SSL', True)
        self.verify_ssl = verify_ssl

        if not all([self.url, self.username, self.password]):
            raise ConfigurationError("Missing required gateway credentials (GATEWAY_URL/USERNAME/PASSWORD)")

        self.api_url = self._normalize_url(self.url)

    @staticmethod
    def _normalize_url(host: str) -> str:
        if not host.startswith(('http://', 'https://')):
            host = 'https://' + host
        host = host.rstrip('/')
        if host.endswith(API_PATH):
            host = host[:-len(API_PATH)]
        return f"{host}{API_PATH}"


class HttpDigestTransport:
    """Posts XML-RPC payloads and returns the raw response text"""

    def __init__(self, config: GatewayConfig, session: requests.Session = None):
        self.config = config
        self.session = session or requests.Session()
        self.session.auth = HTTPDigestAuth(config.username, config.password)

    def __call__(self, method: str, payload: str) -> str:
        try:
            response = self.session.post(
                self.config.api_url,
                data=payload.encode('utf-8'),
                headers={'Content-Type': 'text/xml', 'User-Agent': 'TeleBill/1.0'},
                timeout=self.config.timeout,
                verify=self.config.verify_ssl,
            )
        except requests.Timeout:
            raise GatewayTimeoutError(f"{method} timed out after {self.config.timeout}s")
        except requests.RequestException as e:
            raise GatewayTransportError(f"{method} request failed: {e}")

        if response.status_code == 401:
            raise GatewayTransportError(f"{method} rejected: gateway authentication failed")
        if response.status_code >= 400:
            raise GatewayTransportError(f"{method} failed: HTTP {response.status_code} {response.reason}")
        if 'text/html' in response.headers.get('Content-Type', ''):
            raise GatewayTransportError(f"{method} returned HTML instead of XML-RPC - check endpoint")

        return response.text


class GatewayClient:
    """Client for the gateway's account, payment, rate and CDR methods"""

    def __init__(self, config: GatewayConfig = None,
                 transport: Callable[[str, str], Any] = None):
        if transport is None:
            self.config = config or GatewayConfig()
            transport = HttpDigestTransport(self.config)
        else:
            self.config = config
        self.transport = transport

    def call(self, method: str, params: Dict[str, Any] = None) -> Any:
        """Invoke one XML-RPC method and return the decoded top-level value"""
        payload = encode_method_call(method, params or {})
        logger.debug(f"Gateway call {method} params={sorted((params or {}).keys())}")
        raw = self.transport(method, payload)
        return decode_response(raw)

    def call_raw(self, method: str, params: Dict[str, Any] = None) -> Any:
        return self.transport(method, encode_method_call(method, params or {}))

    # =========================================================================
    # BALANCE OPERATIONS
    # =========================================================================

    def account_debit(self, i_account: int, amount, currency: str,
                      payment_notes: str = None) -> Dict[str, Any]:
        """Debit an account balance; returns the gateway's (heterogeneous) result"""
        params = {
            'i_account': int(i_account),
            'amount': float(amount),
            'currency': currency,
        }
        if payment_notes:
            params['payment_notes'] = payment_notes
        return self._as_struct(self.call('accountDebit', params))

    def account_credit(self, i_account: int, amount, currency: str,
                       payment_notes: str = None) -> Dict[str, Any]:
        params = {
            'i_account': int(i_account),
            'amount': float(amount),
            'currency': currency,
        }
        if payment_notes:
            params['payment_notes'] = payment_notes
        return self._as_struct(self.call('accountCredit', params))

    def get_account_info(self, i_account: int) -> Dict[str, Any]:
        return self._as_struct(self.call('getAccountInfo', {'i_account': int(i_account)}))

    def ping(self, i_account: int = None) -> bool:
        """
        Cheap reachability check. A fault still proves the gateway answered;
        transport, timeout and decode errors propagate.
        """
        params = {'i_account': int(i_account)} if i_account else {}
        try:
            self.call('getAccountInfo', params)
        except GatewayFault as e:
            logger.debug(f"Gateway ping answered with fault {e.fault_code}: {e.fault_string}")
        return True

    # =========================================================================
    # LISTINGS
    # =========================================================================

    def get_payments_list(self, i_account: int = None, **filters) -> List[Dict[str, Any]]:
        params = dict(filters)
        if i_account is not None:
            params['i_account'] = int(i_account)
        return decode_records(self.call_raw('getPaymentsList', params), 'payments')

    def get_account_rates(self, i_account: int, prefix: str = None,
                          offset: int = None, limit: int = None) -> List[Dict[str, Any]]:
        params = {'i_account': int(i_account)}
        if prefix:
            params['prefix'] = prefix
        if offset is not None:
            params['offset'] = offset
        if limit is not None:
            params['limit'] = limit
        return decode_records(self.call_raw('getAccountRates', params), 'rates')

    def get_account_cdrs(self, i_account: int = None, **filters) -> List[Dict[str, Any]]:
        params = {k: v for k, v in filters.items() if v is not None}
        if i_account is not None:
            params['i_account'] = int(i_account)
        return decode_records(self.call_raw('getAccountCDRs', params), 'cdrs')

    @staticmethod
    def _as_struct(decoded) -> Dict[str, Any]:
        if isinstance(decoded, dict):
            return decoded
        if decoded is None:
            return {}
        return {'result': decoded}


def get_gateway_client(transport=None) -> GatewayClient:
    """Factory used by services and tasks"""
    return GatewayClient(transport=transport)


__all__ = [
    'GatewayConfig',
    'GatewayClient',
    'HttpDigestTransport',
    'GatewayError',
    'get_gateway_client',
]
