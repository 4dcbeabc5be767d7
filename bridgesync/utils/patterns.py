"""
Operator-configured string templates.
"""

from typing import Dict


def apply_pattern_string(pattern: str, replacements: Dict[str, str]) -> str:
    """
    Replace every :token in pattern with its value.

    Tokens are substituted in the order of the mapping, literally and
    case-sensitively, so a value can never be re-expanded by a later token
    unless it literally contains that token.
    """
    result = pattern
    for token, value in replacements.items():
        result = result.replace(f":{token}", value)
    return result
