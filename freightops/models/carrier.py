"""
Carrier identities for the logistics session layer

Two carriers are supported. XPO is also reachable under the legacy
spelling "expo"; every lookup and write must resolve aliases first so a
token written under one spelling is visible under the other.
"""
import enum


class CarrierCode(str, enum.Enum):
    """Supported freight carriers (normalized identities)."""
    ESTES = "estes"
    XPO = "xpo"


# Raw name -> identity
CARRIER_ALIASES = {
    "expo": CarrierCode.XPO.value,
}

CARRIER_DISPLAY_NAMES = {
    CarrierCode.ESTES.value: "Estes",
    CarrierCode.XPO.value: "XPO",
}

# Raw names that share a persisted slot with their identity
PERSISTED_SLOTS = {
    CarrierCode.ESTES.value: ("estes",),
    CarrierCode.XPO.value: ("xpo", "expo"),
}


def normalize_carrier(carrier: str) -> str:
    """
    Resolve a raw carrier name to its identity.

    Lowercases, trims and applies aliases. Unknown names normalize to
    themselves so callers can log them.

    Example:
        normalize_carrier(" EXPO ") == "xpo"
    """
    normalized = (carrier or "").strip().lower()
    return CARRIER_ALIASES.get(normalized, normalized)


def is_known_carrier(carrier: str) -> bool:
    return normalize_carrier(carrier) in CARRIER_DISPLAY_NAMES


def display_name(carrier: str) -> str:
    """Human-readable label, used when Authenticate echoes no company name."""
    identity = normalize_carrier(carrier)
    return CARRIER_DISPLAY_NAMES.get(identity, identity.upper())
