"""Read data embedded as JSON in listing pages."""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from selectolax.parser import HTMLParser

logger = logging.getLogger(__name__)


def extract_json_ld(tree: HTMLParser) -> List[Dict[str, Any]]:
    """
    Extract JSON-LD structured data from script tags.

    Returns the parsed objects in document order; a top-level list is
    flattened and ``@graph`` members are appended after their container.
    """
    results = []
    for script in tree.css('script[type="application/ld+json"]'):
        try:
            data = json.loads(script.text(deep=True) or "")
        except json.JSONDecodeError as e:
            logger.debug(f"Skipping malformed JSON-LD block: {e}")
            continue

        for obj in data if isinstance(data, list) else [data]:
            if not isinstance(obj, dict):
                continue
            results.append(obj)
            graph = obj.get("@graph")
            if isinstance(graph, list):
                results.extend(node for node in graph if isinstance(node, dict))
    return results


def json_ld_image(objects: List[Dict[str, Any]]) -> Optional[str]:
    """First ``image`` value found in JSON-LD objects (first entry of a list)."""
    for obj in objects:
        image = obj.get("image")
        if isinstance(image, list):
            image = image[0] if image else None
        if isinstance(image, dict):
            image = image.get("url") or image.get("contentUrl")
        if isinstance(image, str) and image.strip():
            return image.strip()
    return None


def find_int_field(text: str, key: str) -> Optional[int]:
    """
    Find ``"key": 123`` anywhere in inline script state.

    Returns the first integer value, or None.
    """
    match = re.search(rf'"{re.escape(key)}"\s*:\s*(\d+)', text)
    if match:
        return int(match.group(1))
    return None


def find_first_in_string_list(text: str, key: str) -> Optional[str]:
    """Find ``"key": ["first", ...]`` in inline script state and return "first"."""
    match = re.search(rf'"{re.escape(key)}"\s*:\s*\[\s*"([^"]+)"', text)
    if match:
        return match.group(1).replace("\\/", "/")
    return None
