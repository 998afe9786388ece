import json
import re
from typing import Any, Dict


UNKNOWN_CARRIER = "Unknown"

_WRAPPING_QUOTES = re.compile(r"^[\"'](.+)[\"']$")

# Series colors for the dashboard charts
CARRIER_COLORS: Dict[str, str] = {
    "UPS": "#ff9800",
    "FedEx Express": "#2196f3",
    "FedEx Ground": "#4caf50",
    "USPS": "#1e40af",
    "DHL": "#ffc107",
    "Amazon": "#ff5722",
}

DEFAULT_COLORS = ["#0088FE", "#00C49F", "#FFBB28", "#FF8042", "#8884D8", "#82CA9D"]


def carrier_name(raw: Any, default: str = UNKNOWN_CARRIER) -> str:
    """
    Extract a display name from the stored carrier field.

    Scanners write the carrier either as a plain string, as a quoted string,
    as a JSON object serialized into a string, or as a map with a `name` key.
    """
    if isinstance(raw, str):
        if not raw:
            return default
        name = _WRAPPING_QUOTES.sub(r"\1", raw)
        if raw.startswith("{") and raw.endswith("}"):
            try:
                parsed = json.loads(raw)
            except ValueError:
                return name
            if isinstance(parsed, dict) and "name" in parsed:
                return str(parsed["name"])
        return name

    if isinstance(raw, dict):
        return str(raw.get("name") or default)

    return default


def normalize_carrier(name: str) -> str:
    """Collapse service-level variants into the carrier families shown on charts."""
    if "FedEx" in name and "Express" in name:
        return "FedEx Express"
    if "FedEx" in name and "Ground" in name:
        return "FedEx Ground"
    if "UPS" in name:
        return "UPS"
    return name


def short_carrier_name(name: str) -> str:
    if len(name) <= 10:
        return name
    if "FedEx Express" in name:
        return "FedEx Exp"
    if "FedEx Ground" in name:
        return "FedEx Gnd"
    if "USPS" in name:
        return "USPS"
    if "Amazon" in name:
        return "Amazon"
    return f"{name[:8]}..."


def carrier_color(name: str) -> str:
    if name in CARRIER_COLORS:
        return CARRIER_COLORS[name]

    lowered = name.lower()
    if "ups" in lowered and "usps" not in lowered:
        return CARRIER_COLORS["UPS"]
    if "fedex" in lowered and "express" in lowered:
        return CARRIER_COLORS["FedEx Express"]
    if "fedex" in lowered and "ground" in lowered:
        return CARRIER_COLORS["FedEx Ground"]
    if "usps" in lowered:
        return CARRIER_COLORS["USPS"]
    if "dhl" in lowered:
        return CARRIER_COLORS["DHL"]
    if "amazon" in lowered:
        return CARRIER_COLORS["Amazon"]

    # stable per name
    return DEFAULT_COLORS[sum(ord(ch) for ch in name) % len(DEFAULT_COLORS)]
