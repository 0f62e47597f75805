class TeleBillError(Exception):
    """Base exception for TeleBill errors"""
    pass

class GatewayError(TeleBillError):
    """Base exception for billing gateway errors"""
    pass

class GatewayFault(GatewayError):
    """XML-RPC fault envelope returned by the gateway"""

    def __init__(self, fault_code: int, fault_string: str):
        self.fault_code = fault_code
        self.fault_string = fault_string
        super().__init__(f"Gateway fault {fault_code}: {fault_string}")

class GatewayTimeoutError(GatewayError):
    """Exception for gateway calls exceeding the configured timeout"""
    pass

class GatewayTransportError(GatewayError):
    """Exception for HTTP-level gateway failures (unreachable, auth, bad status)"""
    pass

class GatewayDecodeError(GatewayError):
    """Exception for responses that are not well-formed XML-RPC"""

    def __init__(self, message: str, raw_content: str = None):
        self.raw_content = raw_content[:1000] if raw_content else None
        super().__init__(message)

class ConfigurationError(TeleBillError):
    """Exception for missing credentials or account identifiers"""
    pass

class GatewayDebitFailure(TeleBillError):
    """Exception for debit results classified as non-success"""

    def __init__(self, reason: str, result: dict = None):
        self.reason = reason
        self.result = result or {}
        super().__init__(reason)

class PersistenceError(TeleBillError):
    """Exception for ledger writes failing after a gateway operation"""

    def __init__(self, billing_id: int, transaction_id: str, cause: Exception):
        self.billing_id = billing_id
        self.transaction_id = transaction_id
        self.cause = cause
        super().__init__(
            f"billing {billing_id} debited on gateway (transaction {transaction_id}) "
            f"but could not be marked paid: {cause}"
        )

class InvalidBillingTransition(TeleBillError):
    """Exception for billing status changes the lifecycle does not allow"""

    def __init__(self, current_status: str, target_status: str):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(f"Cannot move billing record from '{current_status}' to '{target_status}'")
