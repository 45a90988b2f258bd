"""
Categorization Engine - deterministic merchant and keyword rules.

Lookup order: merchant dictionary, then regex rules, then "Other". The first
hit wins, so the tables below are ordered from most to least specific.
"""
import logging
import re
from decimal import Decimal
from typing import List, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field

from ..schemas.extraction import ParsedTransaction

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Other"
DEFAULT_CONFIDENCE = 0.50

# merchant keyword -> (category, confidence)
MERCHANTS = {
    'spotify': ('Entertainment', 0.95),
    'netflix': ('Entertainment', 0.95),
    'disney': ('Entertainment', 0.95),
    'canva': ('Entertainment', 0.95),
    'beacons': ('Entertainment', 0.90),
    'didi': ('Transportation', 0.92),
    'uber': ('Transportation', 0.92),
    'qantas': ('Transportation', 0.95),
    'trenitalia': ('Transportation', 0.95),
    'esselunga': ('Food & Dining', 0.95),
    'coop': ('Food & Dining', 0.90),
    'conad': ('Food & Dining', 0.90),
    'carrefour': ('Food & Dining', 0.90),
    'lidl': ('Food & Dining', 0.90),
    'coles': ('Food & Dining', 0.92),
    'amazon': ('Shopping', 0.88),
    'aliexpress': ('Shopping', 0.88),
    'zara': ('Shopping', 0.85),
    'pharmacy': ('Healthcare', 0.92),
    'farmacia': ('Healthcare', 0.92),
    'lovable': ('Other', 0.90),
}

_MERCHANT_RES = [
    (re.compile(rf'\b{re.escape(name)}', re.IGNORECASE), name, category, confidence)
    for name, (category, confidence) in MERCHANTS.items()
]

# (regex, category, confidence), applied in order
CATEGORY_RULES = [
    (r'pagamento\s+da|bonifico\s+da|\bsalary\b|\bwages?\b|stipendio|accredito|\brefund|ricarica',
     'Income', 0.95),
    (r'transfer\s+to.*investment|\bto\s+investment', 'Income', 0.92),
    (r'canone|subscription|\bsubs\b|premium|membership|abbonamento', 'Bills & Utilities', 0.92),
    (r'restaurant|ristorante|\bbar\b|\bcaf[eé]\b|pizzeria|convenience|hotel|supermercato|grocer',
     'Food & Dining', 0.85),
    (r'\btaxi\b|car\s*wash|\bfuel\b|carburante|parking|parcheggio|autostrad|\btoll\b', 'Transportation', 0.88),
    (r'medical|medico|doctor|clinic|ospedale|hospital|dentist', 'Healthcare', 0.90),
    (r'electric|\benel\b|internet|\bphone\b|telefon|insurance|assicurazion|bolletta', 'Bills & Utilities', 0.88),
    (r'\bshop|\bstore\b|retail|negozio', 'Shopping', 0.80),
]

_RULE_RES = [(re.compile(p, re.IGNORECASE), category, confidence) for p, category, confidence in CATEGORY_RULES]


class Categorization(BaseModel):
    """Category assigned to a transaction with its confidence"""
    model_config = ConfigDict(frozen=True)

    category: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""


def categorize(description: str, amount: Union[Decimal, float, int] = 0) -> Categorization:
    """
    Assign a spending category to a transaction description.

    Args:
        description: Cleaned transaction description
        amount: Signed amount; accepted for rule hooks, not used by the default rules

    Returns:
        Categorization; "Other" at 0.50 when nothing matches
    """
    text = description or ""

    for regex, name, category, confidence in _MERCHANT_RES:
        if regex.search(text):
            return Categorization(category=category, confidence=confidence, reasoning=f"merchant '{name}'")

    for regex, category, confidence in _RULE_RES:
        match = regex.search(text)
        if match:
            return Categorization(category=category, confidence=confidence,
                                  reasoning=f"keyword '{match.group(0).strip().lower()}'")

    return Categorization(category=DEFAULT_CATEGORY, confidence=DEFAULT_CONFIDENCE, reasoning="no rule matched")


class CategoryRefiner(Protocol):
    """
    Optional post-pipeline re-categorisation hook.

    Receives the transactions of one document and returns them (possibly with
    new categories and confidences). Raising leaves the rule-based categories
    in place.
    """

    def refine(self, transactions: List[ParsedTransaction]) -> List[ParsedTransaction]:
        ...
