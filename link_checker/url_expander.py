"""
1.0 URL Template Expander
Expands a URL carrying ValueTrack conditional macros into the concrete URLs
a click could actually land on.

Paired macros that are expanded:
- {ifmobile:...} / {ifnotmobile:...}  (device)
- {ifsearch:...} / {ifcontent:...}    (network)

Every other bracketed token ({lpurl}, {lpurl.host}, {_custom}, {ifsomething:x}) is stripped.
"""

import re
from typing import Dict, List, Tuple

# 1.1 Conditional macro, e.g. {IfMobile:m}. Keys are case-insensitive.
IF_MACRO_RE = re.compile(r"({(if\w+):([^}]+)})", re.IGNORECASE)

# 1.2 Any leftover bracketed token: ValueTrack, custom parameter or stray macro
CUSTOM_PARAM_RE = re.compile(r"\{[^{}]*\}")

# 1.3 Mutually exclusive macro pairs, each expanded independently
MODIFIER_PAIRS: List[Tuple[str, str]] = [
    ("ifmobile", "ifnotmobile"),
    ("ifsearch", "ifcontent"),
]


def _find_modifiers(url: str) -> Dict[str, Tuple[str, str]]:
    """Map lower-cased macro key -> (literal macro text, value)."""
    modifiers = {}
    for match in IF_MACRO_RE.finditer(url):
        modifiers[match.group(2).lower()] = (match.group(1), match.group(3))
    return modifiers


def _modifier_replace(modifiers: Dict[str, Tuple[str, str]], keep: str, drop: str, url: str) -> str:
    """Substitute the value of `keep` and delete the `drop` macro."""
    if keep in modifiers:
        macro, value = modifiers[keep]
        url = url.replace(macro, value, 1)
    if drop in modifiers:
        url = url.replace(modifiers[drop][0], "", 1)
    return url


def _strip_macros(url: str) -> str:
    url = IF_MACRO_RE.sub("", url)
    # Nested tokens unwrap one level per pass
    stripped = CUSTOM_PARAM_RE.sub("", url)
    while stripped != url:
        url, stripped = stripped, CUSTOM_PARAM_RE.sub("", stripped)
    # Unbalanced braces never form a token; drop them too
    return url.replace("{", "").replace("}", "")


def expand_url_modifiers(url: str) -> List[str]:
    """
    2.0 Expand one URL into every variant needed to cover its macro branches.

    Each pair present in the URL doubles the variants (first member honoured,
    second removed, and vice versa); absent pairs do not branch. Results are
    deduplicated and stripped of all remaining macros.

    Args:
        url: Final URL or mobile final URL, possibly containing macros

    Returns:
        Non-empty list of distinct macro-free URLs (order is not significant)
    """
    modifiers = _find_modifiers(url)

    combinations = [url]
    for first, second in MODIFIER_PAIRS:
        if first not in modifiers and second not in modifiers:
            continue
        combinations = [
            variant
            for base in combinations
            for variant in (
                _modifier_replace(modifiers, first, second, base),
                _modifier_replace(modifiers, second, first, base),
            )
        ]

    # dict keeps first-seen order while dropping duplicates
    expanded = {_strip_macros(candidate): True for candidate in combinations}
    return list(expanded)
