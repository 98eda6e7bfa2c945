"""
Error types raised while running a brand scraping job
"""


class ScraperError(Exception):
    """Base class for scraper errors"""


class TransientProviderError(ScraperError):
    """Timeout or connection failure talking to the Places API"""


class QuotaExceeded(ScraperError):
    """Places API kept answering OVER_QUERY_LIMIT after all retries"""

    def __init__(self, message: str = "API quota exceeded after retries"):
        super().__init__(message)


class CostLimitExceeded(ScraperError):
    """Accumulated API cost went over the configured ceiling"""

    def __init__(self, cost: float, ceiling: float):
        self.cost = cost
        self.ceiling = ceiling
        super().__init__(f"Cost limit of {ceiling:,.2f} exceeded (current cost {cost:,.2f})")


class StorageWriteError(ScraperError):
    """A session or result write to the session store failed"""


class JobSetupError(ScraperError):
    """The initial job record could not be created"""
