"""
Garment category mapping

Maps a free-text garment label (as returned by the vision model) onto the
small, fixed set of try-on categories.
"""

from typing import Dict, List, Optional, Tuple

DEFAULT_CATEGORY = 'upper_body'
DEFAULT_ITEM_TYPE = 'clothing'

# Keywords per category. Group order matters: a later group that matches
# overrides an earlier one (e.g. "SHIRT DRESS" is a dress).
CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    'upper_body': [
        'SHIRT', 'TSHIRT', 'T-SHIRT', 'JACKET', 'HOODIE', 'SWEATER',
        'COAT', 'TOP', 'BLOUSE', 'CARDIGAN',
    ],
    'lower_body': ['PANTS', 'JEANS', 'TROUSERS', 'SHORTS', 'SKIRT'],
    'dresses': ['DRESS', 'GOWN', 'JUMPSUIT', 'ROMPER'],
    'accessories': [
        'GLASSES', 'SUNGLASSES', 'WATCH', 'HAT', 'CAP', 'SHOES', 'SNEAKERS',
        'BOOTS', 'BAG', 'BELT', 'SCARF', 'TIE', 'JEWELRY', 'NECKLACE',
        'BRACELET', 'EARRING',
    ],
}

VALID_CATEGORIES = list(CATEGORY_KEYWORDS.keys())

# Single-word vocabulary the classifier is asked to answer with
DETECTION_VOCABULARY = [
    'SHIRT', 'TSHIRT', 'JACKET', 'HOODIE', 'SWEATER', 'COAT', 'PANTS', 'JEANS',
    'TROUSERS', 'SHORTS', 'SKIRT', 'DRESS', 'GLASSES', 'SUNGLASSES', 'WATCH',
    'HAT', 'CAP', 'SHOES', 'SNEAKERS', 'BOOTS', 'BAG', 'OTHER',
]


def map_detection_to_category(raw_detection: Optional[str]) -> Tuple[str, str]:
    """
    Map a raw detection label to (category, item_type).

    Args:
        raw_detection: Label returned by the classifier, any case

    Returns:
        Tuple of (category, item_type); the default pair when nothing matches
    """
    category, item_type = DEFAULT_CATEGORY, DEFAULT_ITEM_TYPE
    if not raw_detection:
        return category, item_type

    detected = raw_detection.strip().upper()
    for group, keywords in CATEGORY_KEYWORDS.items():
        for keyword in keywords:
            if keyword in detected:
                category, item_type = group, keyword.lower()
                break
    return category, item_type


def validate_category(category: Optional[str]) -> bool:
    if not category:
        return False
    return category.strip().lower() in VALID_CATEGORIES
