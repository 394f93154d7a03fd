"""
Registry of watched addresses and their event watermarks.
"""
import asyncio
import logging
from typing import Dict, Set

from core.errors import InvalidAddressError
from utils.addresses import is_valid_address, normalize_address

logger = logging.getLogger(__name__)


class AddressRegistry:
    """
    Set of watched addresses plus, per address, the timestamp of the last
    applied event cycle (the watermark).

    All reads hand out copies; callers never hold a live reference.
    """

    def __init__(self):
        self._addresses: Set[str] = set()
        self._watermarks: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def add(self, address: str) -> bool:
        """
        Start watching an address.

        Returns:
            True if the address was newly added

        Raises:
            InvalidAddressError: If the address is malformed
        """
        normalized = normalize_address(address) if isinstance(address, str) else address
        if not is_valid_address(normalized):
            raise InvalidAddressError(f"Invalid address: {address}")

        async with self._lock:
            if normalized in self._addresses:
                return False
            self._addresses.add(normalized)
            self._watermarks[normalized] = 0

        logger.info(f"Added new address to monitor: {normalized}")
        return True

    async def remove(self, address: str) -> bool:
        """Stop watching an address and forget its watermark."""
        normalized = normalize_address(address)
        async with self._lock:
            if normalized not in self._addresses:
                return False
            self._addresses.discard(normalized)
            self._watermarks.pop(normalized, None)

        logger.info(f"Removed address from monitoring: {normalized}")
        return True

    async def list(self) -> Set[str]:
        """Snapshot of the watched addresses."""
        async with self._lock:
            return set(self._addresses)

    async def validate(self) -> Set[str]:
        """Return the subset of watched addresses that fail validation."""
        async with self._lock:
            return {a for a in self._addresses if not is_valid_address(a)}

    async def watermark(self, address: str) -> int:
        """Last applied event cycle for an address (0 if unknown)."""
        async with self._lock:
            return self._watermarks.get(normalize_address(address), 0)

    async def watermarks(self) -> Dict[str, int]:
        async with self._lock:
            return dict(self._watermarks)

    async def advance_watermark(self, address: str, timestamp: int) -> int:
        """
        Move an address's watermark forward. Never moves it backwards, and
        is ignored for addresses removed while a poll was in flight.

        Returns:
            The watermark after the update
        """
        normalized = normalize_address(address)
        async with self._lock:
            if normalized not in self._addresses:
                return 0
            current = self._watermarks.get(normalized, 0)
            if timestamp > current:
                self._watermarks[normalized] = timestamp
                return timestamp
            return current

    def __len__(self) -> int:
        return len(self._addresses)

    def __contains__(self, address: str) -> bool:
        return normalize_address(address) in self._addresses
