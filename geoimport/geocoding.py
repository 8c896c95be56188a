# =============================================================================
# Geocoding Batch Processor
# =============================================================================
# Address extraction and de-duplicated batch geocoding. Results are keyed by
# the trimmed address string (case-sensitive), so every row sharing an
# address resolves from a single lookup.
# =============================================================================

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from geopy.exc import GeopyError
from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders import Nominatim

from geoimport.duplicates import get_by_path
from geoimport.exceptions import GeocodingError
from geoimport.models import GeocodingResult

__all__ = [
    "NominatimGeocoder",
    "AddressExtraction",
    "BatchGeocodingOutcome",
    "normalize_address",
    "extract_addresses",
    "geocode_unique_addresses",
    "failure_report",
]

logger = logging.getLogger(__name__)

Geocode = Callable[[str], GeocodingResult]


class NominatimGeocoder:
    """
    OpenStreetMap Nominatim lookups through geopy, throttled by RateLimiter.

    Raises GeocodingError when the provider errors or finds nothing.
    """

    provider = "nominatim"

    def __init__(self, user_agent: str, min_delay_seconds: float = 1.0, timeout: int = 10):
        self._geocoder = Nominatim(user_agent=user_agent, timeout=timeout)
        self._geocode = RateLimiter(
            self._geocoder.geocode,
            min_delay_seconds=min_delay_seconds,
            max_retries=2,
            swallow_exceptions=False,
        )

    def __call__(self, address: str) -> GeocodingResult:
        return self.geocode(address)

    def geocode(self, address: str) -> GeocodingResult:
        try:
            location = self._geocode(address, exactly_one=True)
        except GeopyError as e:
            raise GeocodingError(f"Geocoding provider error for '{address}': {e}", code="PROVIDER_ERROR") from e

        if location is None:
            raise GeocodingError(f"No results for '{address}'", code="NO_RESULTS")

        importance = (location.raw or {}).get("importance")
        return GeocodingResult(
            latitude=location.latitude,
            longitude=location.longitude,
            confidence=float(importance) if importance is not None else None,
            normalized_address=location.address,
            provider=self.provider,
        )


@dataclass
class AddressExtraction:
    addresses: list[str] = field(default_factory=list)
    rows_with_address: int = 0
    rows_without_address: int = 0
    rows_skipped: int = 0


@dataclass
class BatchGeocodingOutcome:
    results: dict[str, GeocodingResult] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)
    cached: int = 0

    @property
    def summary(self) -> dict[str, int]:
        return {
            "total": len(self.results) + len(self.failures),
            "successful": len(self.results),
            "failed": len(self.failures),
            "cached": self.cached,
        }

    @property
    def all_failed(self) -> bool:
        return bool(self.failures) and not self.results


def normalize_address(value: Any) -> Optional[str]:
    """Trimmed address, or None for empty and non-string values."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def extract_addresses(
    rows: Iterable[tuple[int, dict[str, Any]]],
    address_path: str,
    skip_rows: set[int],
) -> AddressExtraction:
    """
    Unique trimmed addresses from ``(row_number, row)`` pairs, first-seen order.

    Rows in ``skip_rows`` (duplicates) are ignored entirely.
    """
    extraction = AddressExtraction()
    seen: set[str] = set()
    for row_number, row in rows:
        if row_number in skip_rows:
            extraction.rows_skipped += 1
            continue
        address = normalize_address(get_by_path(row, address_path))
        if address is None:
            extraction.rows_without_address += 1
            continue
        extraction.rows_with_address += 1
        if address not in seen:
            seen.add(address)
            extraction.addresses.append(address)
    return extraction


def geocode_unique_addresses(
    addresses: list[str],
    geocode: Geocode,
    cached: Optional[dict[str, GeocodingResult]] = None,
    max_workers: int = 4,
) -> BatchGeocodingOutcome:
    """
    Geocode each address exactly once, consulting ``cached`` first.

    Lookups run concurrently with no ordering between them; all results are
    merged into one outcome before returning.
    """
    outcome = BatchGeocodingOutcome()
    cached = cached or {}
    pending: list[str] = []
    for address in dict.fromkeys(addresses):
        if address in cached:
            outcome.results[address] = cached[address]
            outcome.cached += 1
        else:
            pending.append(address)

    if not pending:
        return outcome

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        futures = {executor.submit(geocode, address): address for address in pending}
        for future in as_completed(futures):
            address = futures[future]
            try:
                outcome.results[address] = future.result()
            except GeocodingError as e:
                logger.warning(f"Geocoding failed for '{address}': {e}")
                outcome.failures[address] = str(e)

    logger.info(
        f"Geocoded {len(addresses)} unique addresses: {len(outcome.results)} resolved "
        f"({outcome.cached} cached), {len(outcome.failures)} failed"
    )
    return outcome


def failure_report(failures: dict[str, str]) -> str:
    lines = [f"All {len(failures)} geocoding attempts failed:"]
    lines.extend(f"  - {address}: {reason}" for address, reason in sorted(failures.items()))
    return "\n".join(lines)
