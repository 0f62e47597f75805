# Service Factory Pattern
def get_rate_service():
    from .rate_service import RateService
    return RateService()

def get_reconciliation_service(gateway=None, redis_client=None):
    from .reconciliation_service import ScheduledBillingReconciler
    return ScheduledBillingReconciler(gateway=gateway, redis_client=redis_client)


__all__ = [
    "get_rate_service",
    "get_reconciliation_service",
]
