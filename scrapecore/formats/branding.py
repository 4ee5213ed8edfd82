"""Brand profile (colors, fonts, spacing, components, logo) from markup and inline CSS.

Only CSS that ships with the document is read: ``<style>`` blocks and
``style`` attributes.  Linked stylesheets are not fetched.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Any, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

_RULE = re.compile(r"([^{}]+)\{([^{}]*)\}")
_DECLARATION = re.compile(r"([\w-]+)\s*:\s*([^;]+)")
_COLOR = re.compile(r"#(?:[0-9a-fA-F]{6}|[0-9a-fA-F]{3})\b|rgba?\([^)]*\)")
_PX = re.compile(r"(\d+(?:\.\d+)?)px")

_GENERIC_FONTS = {
    "serif", "sans-serif", "monospace", "cursive", "fantasy", "system-ui",
    "inherit", "initial", "-apple-system", "blinkmacsystemfont", "ui-sans-serif",
}


def _normalize_color(value: str) -> Optional[str]:
    """Return *value* as ``#rrggbb`` (lowercase), or ``None`` if unparseable."""
    value = value.strip().lower()
    if value.startswith("#"):
        if len(value) == 4:
            return "#" + "".join(c * 2 for c in value[1:])
        return value if len(value) == 7 else None
    match = re.match(r"rgba?\(\s*(\d+)[\s,]+(\d+)[\s,]+(\d+)", value)
    if match:
        r, g, b = (min(255, int(x)) for x in match.groups())
        return f"#{r:02x}{g:02x}{b:02x}"
    return None


def _luminance(hex_color: str) -> float:
    r, g, b = (int(hex_color[i:i + 2], 16) / 255 for i in (1, 3, 5))
    return 0.2126 * r + 0.7152 * g + 0.0722 * b


def _css_rules(soup: BeautifulSoup) -> list[tuple[str, dict[str, str]]]:
    rules: list[tuple[str, dict[str, str]]] = []
    for style in soup.find_all("style"):
        css = re.sub(r"/\*.*?\*/", "", style.get_text(), flags=re.DOTALL)
        for selector, body in _RULE.findall(css):
            rules.append((selector.strip().lower(), _declarations(body)))
    for element in soup.find_all(style=True):
        rules.append((f"[inline {element.name}]", _declarations(element["style"])))
    return rules


def _declarations(body: str) -> dict[str, str]:
    return {k.strip().lower(): v.strip() for k, v in _DECLARATION.findall(body)}


def _first_family(value: str) -> Optional[str]:
    for family in value.split(","):
        family = family.strip().strip("'\"")
        if family and family.lower() not in _GENERIC_FONTS and not family.startswith("var("):
            return family
    return None


def _most_common(counter: Counter) -> Optional[Any]:
    return counter.most_common(1)[0][0] if counter else None


def _colors(rules: list[tuple[str, dict[str, str]]]) -> dict[str, Any]:
    palette: Counter = Counter()
    named: dict[str, str] = {}
    background: Optional[str] = None
    text: Optional[str] = None

    for selector, decls in rules:
        for prop, value in decls.items():
            for raw in _COLOR.findall(value):
                color = _normalize_color(raw)
                if color is None:
                    continue
                palette[color] += 1
                if prop.startswith("--"):
                    for role in ("primary", "secondary", "accent"):
                        if role in prop and role not in named:
                            named[role] = color
        if selector in ("body", "html", ":root", "html, body", "body, html"):
            bg = decls.get("background-color") or decls.get("background")
            if bg and background is None:
                background = _normalize_color(bg)
            if decls.get("color") and text is None:
                text = _normalize_color(decls["color"])

    ranked = [c for c, _ in palette.most_common() if c not in (background, text)]
    primary = named.get("primary") or (ranked[0] if ranked else None)
    secondary = named.get("secondary") or next((c for c in ranked if c != primary), None)
    accent = named.get("accent") or next((c for c in ranked if c not in (primary, secondary)), None)

    return {
        "primary": primary,
        "secondary": secondary,
        "accent": accent,
        "background": background,
        "textPrimary": text,
        "palette": [c for c, _ in palette.most_common(8)],
    }


def _fonts(rules: list[tuple[str, dict[str, str]]]) -> list[dict[str, Any]]:
    usage: Counter = Counter()
    heading: Optional[str] = None
    for selector, decls in rules:
        family = _first_family(decls.get("font-family", ""))
        if family is None:
            continue
        usage[family] += 1
        if heading is None and re.search(r"\bh[1-3]\b", selector):
            heading = family
    fonts = []
    for index, (family, _) in enumerate(usage.most_common(4)):
        role = "heading" if family == heading else ("body" if index == 0 else "other")
        fonts.append({"family": family, "role": role})
    return fonts


def _spacing(rules: list[tuple[str, dict[str, str]]]) -> dict[str, Any]:
    units: Counter = Counter()
    radii: Counter = Counter()
    for _, decls in rules:
        for prop in ("padding", "margin", "gap", "padding-top", "padding-left", "margin-top", "margin-bottom"):
            for value in _PX.findall(decls.get(prop, "")):
                if float(value) > 0:
                    units[float(value)] += 1
        for value in _PX.findall(decls.get("border-radius", "")):
            radii[float(value)] += 1
    base = _most_common(units)
    radius = _most_common(radii)
    return {
        "baseUnit": base,
        "borderRadius": f"{radius:g}px" if radius is not None else None,
    }


def _button(soup: BeautifulSoup, rules: list[tuple[str, dict[str, str]]]) -> Optional[dict[str, Any]]:
    style: dict[str, str] = {}
    for selector, decls in rules:
        if re.search(r"\bbutton\b|\.btn|\.button|\[inline button\]", selector):
            for key, value in decls.items():
                style.setdefault(key, value)
    element = soup.find("button") or soup.select_one("a.btn, a.button, .btn, .button")
    if element is None and not style:
        return None
    bg = style.get("background-color") or style.get("background")
    return {
        "text": element.get_text(strip=True) if element is not None else None,
        "background": _normalize_color(bg) if bg else None,
        "textColor": _normalize_color(style["color"]) if style.get("color") else None,
        "borderRadius": style.get("border-radius"),
    }


def _logo(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    for img in soup.find_all("img"):
        haystack = " ".join(
            [img.get("src", ""), img.get("alt", ""), img.get("id", ""), " ".join(img.get("class", []))]
        ).lower()
        if "logo" in haystack and img.get("src"):
            return urljoin(base_url, img["src"])
    header = soup.find("header")
    if header is not None:
        img = header.find("img", src=True)
        if img is not None:
            return urljoin(base_url, img["src"])
    return None


def _favicon(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    for link in soup.find_all("link", href=True):
        rel = " ".join(link.get("rel", [])).lower()
        if "icon" in rel:
            return urljoin(base_url, link["href"])
    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_branding(soup: BeautifulSoup, base_url: str) -> dict[str, Any]:
    """Return the brand profile of the page in *soup*.

    Keys: ``colorScheme`` (``light`` / ``dark``), ``colors``, ``fonts``,
    ``spacing``, ``components`` and ``images`` (``logo``, ``favicon``).
    Values that cannot be inferred are ``None`` or empty.
    """
    rules = _css_rules(soup)
    colors = _colors(rules)
    scheme = "light"
    if colors["background"] is not None and _luminance(colors["background"]) < 0.5:
        scheme = "dark"

    button = _button(soup, rules)
    return {
        "colorScheme": scheme,
        "colors": colors,
        "fonts": _fonts(rules),
        "spacing": _spacing(rules),
        "components": {"buttonPrimary": button} if button else {},
        "images": {"logo": _logo(soup, base_url), "favicon": _favicon(soup, base_url)},
    }
