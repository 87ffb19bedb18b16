from __future__ import annotations
from math import radians, sin, cos, asin, sqrt
import re
from typing import Optional

EARTH_RADIUS_MILES = 3958.7613

_UK_PC = re.compile(
    r"\b(GIR\s?0AA|[A-PR-UWYZ][0-9]{1,2}"
    r"|[A-PR-UWYZ][A-HK-Y][0-9]{1,2}"
    r"|[A-PR-UWYZ][0-9][A-HJKS-UW]"
    r"|[A-PR-UWYZ][A-HK-Y][0-9][ABEHMNPRV-Y])\s?[0-9][ABD-HJLNP-UW-Z]{2}\b",
    re.IGNORECASE,
)

def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    dphi = radians(lat2 - lat1)
    dlmb = radians(lon2 - lon1)
    phi1 = radians(lat1); phi2 = radians(lat2)
    a = sin(dphi/2)**2 + cos(phi1)*cos(phi2)*sin(dlmb/2)**2
    return 2 * EARTH_RADIUS_MILES * asin(min(1.0, sqrt(a)))

def extract_postcode(s: Optional[str]) -> Optional[str]:
    m = _UK_PC.search(s or "")
    return m.group(0).upper().replace(" ", "") if m else None

def _outward(pc: str) -> str:
    compact = pc.replace(" ", "").upper()
    # inward code is always the last three characters
    return pc.split()[0].upper() if " " in pc.strip() else compact[:-3]

def postcode_proximity(pc1: Optional[str], pc2: Optional[str]) -> int:
    """
    Coarse UK postcode closeness score:
      100 same full postcode, 75 same outward code, 40 same area letters,
      10 different areas, 0 if either is missing.
    """
    if not pc1 or not pc2:
        return 0
    if pc1.replace(" ", "").upper() == pc2.replace(" ", "").upper():
        return 100
    out1, out2 = _outward(pc1.strip()), _outward(pc2.strip())
    if out1 and out1 == out2:
        return 75
    area1 = re.match(r"^[A-Z]+", out1)
    area2 = re.match(r"^[A-Z]+", out2)
    if area1 and area2 and area1.group(0) == area2.group(0):
        return 40
    return 10
