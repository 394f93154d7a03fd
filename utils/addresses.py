"""
Address helpers: validation, normalization and display.
"""
import string

ADDRESS_PREFIX = "0x"
ADDRESS_LENGTH = 66  # "0x" + 64 hex characters

_HEX_DIGITS = set(string.hexdigits)


def is_valid_address(address: str) -> bool:
    """
    Check whether a string is a well-formed ledger address.

    Args:
        address: Candidate address

    Returns:
        True for a 66-character, 0x-prefixed hex string
    """
    if not isinstance(address, str):
        return False
    if len(address) != ADDRESS_LENGTH or not address.startswith(ADDRESS_PREFIX):
        return False
    return all(c in _HEX_DIGITS for c in address[len(ADDRESS_PREFIX):])


def normalize_address(address: str) -> str:
    """Strip whitespace and lowercase an address for consistent matching."""
    return address.strip().lower()


def format_address(address: str, length: int = 6) -> str:
    """
    Format address for display (0x1234...abcd).

    Args:
        address: Full address
        length: Number of characters to show on each side

    Returns:
        Shortened address string
    """
    if not address or len(address) <= length * 2:
        return address

    return f"{address[:length]}...{address[-length:]}"


def parse_addresses(text: str) -> list[str]:
    """
    Parse multiple addresses from free-form input.
    Supports comma and newline separation.

    Args:
        text: Input containing one or more addresses

    Returns:
        List of normalized addresses, in input order, without duplicates
    """
    addresses = []
    for line in text.replace(',', '\n').split('\n'):
        addr = normalize_address(line)
        if addr and addr not in addresses:
            addresses.append(addr)

    return addresses
