"""
Text parsers module.
"""

from parsers.address_parser import parse_address_to_qb

__all__ = [
    "parse_address_to_qb",
]
