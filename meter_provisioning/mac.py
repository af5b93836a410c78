"""MAC address normalization, validation, and sequential generation."""

from __future__ import annotations

import re

MAC_MAX_VALUE = 0xFFFFFFFFFFFF
MAC_HEX_LENGTH = 12
MAX_SEQUENCE_LENGTH = 16

_NON_HEX_PATTERN = re.compile(r"[^0-9A-Fa-f]")
_SEPARATOR_PATTERN = re.compile(r"[:\-.\s]")
_HEX_ONLY_PATTERN = re.compile(r"[0-9A-Fa-f]{12}")
_CANONICAL_PATTERN = re.compile(r"[0-9A-F]{2}(:[0-9A-F]{2}){5}")


class MacAddressError(ValueError):
    """Base MAC address exception."""

    error_code = "mac_address_error"


class MacFormatError(MacAddressError):
    error_code = "mac_format_error"


class MacOverflowError(MacAddressError):
    """Raised when a generated address would leave the 48-bit address space."""

    error_code = "mac_overflow_error"

    def __init__(self, *, base_mac: str, offset: int) -> None:
        super().__init__(
            f"address {base_mac} + {offset} exceeds FF:FF:FF:FF:FF:FF"
        )
        self.base_mac = base_mac
        self.offset = offset


def normalize_mac(value: str) -> str:
    """Return ``value`` as uppercase colon-separated hex pairs.

    Every non-hex character is discarded first, so colon, hyphen, Cisco dot,
    space and bare forms all converge. Partial input yields a prefix of the
    final canonical form, which keeps interactive typing stable.
    """
    cleaned = _NON_HEX_PATTERN.sub("", value).upper()
    return ":".join(cleaned[index : index + 2] for index in range(0, len(cleaned), 2))


def is_complete_mac(value: str) -> bool:
    return _HEX_ONLY_PATTERN.fullmatch(_strip_separators(value)) is not None


def validate_mac_format(value: str) -> bool:
    return _CANONICAL_PATTERN.fullmatch(value) is not None


def extract_oui(mac: str) -> str:
    return _strip_separators(mac)[:6]


def mac_to_int(mac: str) -> int:
    hex_digits = _strip_separators(mac)
    if _HEX_ONLY_PATTERN.fullmatch(hex_digits) is None:
        raise MacFormatError(f"not a complete MAC address: {mac!r}")
    return int(hex_digits, 16)


def int_to_mac(value: int) -> str:
    if value < 0 or value > MAC_MAX_VALUE:
        raise ValueError(f"value is outside the 48-bit MAC range: {value}")
    return normalize_mac(f"{value:012X}")


def generate_mac_sequence(base_mac: str, count: int) -> list[str]:
    """Return ``count`` consecutive canonical addresses starting at ``base_mac``.

    Either the whole sequence fits below ``FF:FF:FF:FF:FF:FF`` or
    ``MacOverflowError`` is raised for the first offset that does not; no
    partial sequence is ever returned and values never wrap around.
    """
    if count < 1 or count > MAX_SEQUENCE_LENGTH:
        raise ValueError(
            f"sequence count must be between 1 and {MAX_SEQUENCE_LENGTH} (received {count})"
        )

    canonical_base = normalize_mac(base_mac)
    base_value = mac_to_int(canonical_base)

    values: list[int] = []
    for offset in range(count):
        candidate = base_value + offset
        if candidate > MAC_MAX_VALUE:
            raise MacOverflowError(base_mac=canonical_base, offset=offset)
        values.append(candidate)
    return [int_to_mac(value) for value in values]


def _strip_separators(value: str) -> str:
    return _SEPARATOR_PATTERN.sub("", value)
