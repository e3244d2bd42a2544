"""Colour normalisation for reporting light state."""
from typing import Any, Dict, Optional, Tuple

from homeassistant.util import color

RGB = Tuple[int, int, int]


def rgb_from_attributes(attrs: Dict[str, Any]) -> Optional[RGB]:
    """Return RGB from whichever colour representation the light reports."""
    if attrs.get("rgb_color"):
        r, g, b = attrs["rgb_color"][:3]
        return int(r), int(g), int(b)
    for key in ("rgbw_color", "rgbww_color"):
        if attrs.get(key):
            r, g, b = attrs[key][:3]
            return int(r), int(g), int(b)
    if attrs.get("hs_color"):
        hue, sat = attrs["hs_color"][:2]
        return color.color_hs_to_RGB(float(hue), float(sat))
    if attrs.get("xy_color"):
        x, y = attrs["xy_color"][:2]
        return color.color_xy_to_RGB(float(x), float(y))
    return None


def rgb_to_hex(rgb: Optional[RGB]) -> Optional[str]:
    if rgb is None:
        return None
    r, g, b = (max(0, min(255, int(c))) for c in rgb)
    return "#" + color.color_rgb_to_hex(r, g, b)
