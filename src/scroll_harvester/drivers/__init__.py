from scroll_harvester.drivers.base import AutomationDriver, matches_page_query

__all__ = [
    "AutomationDriver",
    "matches_page_query",
]
