"""Geocoding Resource - Nominatim lookups for address columns."""

from functools import cached_property

from dagster import ConfigurableResource
from pydantic import Field

from geoimport.geocoding import NominatimGeocoder
from geoimport.models import GeocodingResult


class GeocodingResource(ConfigurableResource):
    """
    Dagster resource wrapping the Nominatim geocoder.

    Lookups are throttled to ``min_delay_seconds`` apart (Nominatim's usage
    policy allows one request per second).
    """

    user_agent: str = Field("geo-event-import", description="User agent sent to Nominatim")
    min_delay_seconds: float = Field(1.0, description="Minimum delay between lookups")
    timeout: int = Field(10, description="Per-request timeout in seconds")

    @cached_property
    def _geocoder(self) -> NominatimGeocoder:
        return NominatimGeocoder(
            user_agent=self.user_agent,
            min_delay_seconds=self.min_delay_seconds,
            timeout=self.timeout,
        )

    def geocode(self, address: str) -> GeocodingResult:
        """
        Raises:
            GeocodingError: When the provider errors or finds nothing
        """
        return self._geocoder.geocode(address)
