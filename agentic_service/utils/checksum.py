"""
Checksum utility functions
"""

import hashlib
import json
from typing import Any, Dict


def calculate_checksum(text: str) -> str:
    """
    Calculate SHA256 checksum of text.

    Args:
        text: Text to hash

    Returns:
        Hexadecimal SHA256 hash
    """
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


def calculate_input_hash(input_data: Dict[str, Any]) -> str:
    """
    Hash of a job's input document, independent of key order.

    Args:
        input_data: Validated input document

    Returns:
        Hexadecimal SHA256 hash of the canonical JSON encoding
    """
    canonical = json.dumps(input_data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return calculate_checksum(canonical)


def result_to_string(result: Any) -> str:
    """MIP-003 results are submitted as strings"""
    if isinstance(result, str):
        return result
    return json.dumps(result, sort_keys=True, ensure_ascii=False)
