"""
API throttling classes for the price crawler.
"""

from rest_framework.throttling import UserRateThrottle


class CrawlTriggerThrottle(UserRateThrottle):
    """
    Throttle for the on-demand crawl trigger.

    Rate: 6 requests per hour per user.
    Applied to: /api/v1/crawl/
    """

    rate = '6/hour'
    scope = 'crawl_trigger'
