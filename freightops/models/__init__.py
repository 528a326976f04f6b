from freightops.models.carrier import (
    CarrierCode,
    normalize_carrier,
    is_known_carrier,
    display_name,
)
