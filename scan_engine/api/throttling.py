"""
Custom throttle classes for API rate limiting.
"""

from rest_framework.throttling import UserRateThrottle


class ScanTriggerThrottle(UserRateThrottle):
    """
    Throttle for scan trigger endpoints.

    Rate: 20 requests per hour per user.
    Applied to: /api/v1/products/<id>/scan/
    """

    rate = '20/hour'
    scope = 'scan_trigger'
