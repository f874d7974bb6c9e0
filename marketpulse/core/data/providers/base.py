"""Abstract MarketDataProvider — upstream sources of market aggregates implement this."""
from abc import ABC, abstractmethod

from marketpulse.core.data.types import Aggregate, PropertyType


class MarketDataProvider(ABC):

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique key used for the usage ledger: 'rentcast'"""
        ...

    @abstractmethod
    async def fetch_aggregate(self, market_id: str, property_type: PropertyType) -> Aggregate:
        """
        Fetch and normalize one aggregate for a canonical market id.
        Raises ProviderHTTPError for non-2xx responses and MalformedResponse
        for unreadable payloads. Never consults the usage budget itself.
        """
        ...
