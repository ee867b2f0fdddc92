"""
Domain Gate - decides whether a message belongs to the copper / copper alloy
domain before any call to the completion service is made.
"""
from typing import Any, Iterable, Tuple

# Matched as case-insensitive substrings. Keep entries long enough that they
# do not occur inside unrelated everyday words.
COPPER_VOCABULARY: Tuple[str, ...] = (
    # English terms
    "copper",
    "brass",
    "bronze",
    "cupronickel",
    "cupro-nickel",
    "nickel silver",
    "beryllium",
    "phosphor",
    "alloy",
    "tensile",
    "yield strength",
    "hardness",
    "elongation",
    "conductivity",
    "annealing",
    "dezincification",
    "electrolytic tough pitch",
    "oxygen-free",
    # Alloy designations (UNS, BS, GB, JIS)
    "cz1",
    "cw5",
    "cw6",
    "c10100",
    "c11000",
    "c17200",
    "c26000",
    "c36000",
    "c51000",
    "c70600",
    "qsn",
    "qbe",
    "hpb",
    "h62",
    "h65",
    "h68",
    "h70",
    # Chinese terms
    "铜",
    "黄铜",
    "青铜",
    "白铜",
    "紫铜",
    "合金",
    "牌号",
    "热处理",
    "抗拉强度",
    "屈服强度",
    "硬度",
    "导电率",
    "退火",
)


class KeywordDomainGate:
    """
    Case-insensitive keyword classifier.

    Instances are plain callables (str -> bool), so the stream relay can be
    handed any richer classifier with the same signature.
    """

    def __init__(self, vocabulary: Iterable[str] = COPPER_VOCABULARY):
        self.vocabulary = tuple(word.lower() for word in vocabulary if word)

    def is_in_scope(self, text: Any) -> bool:
        if not isinstance(text, str) or not text.strip():
            return False
        lowered = text.lower()
        return any(word in lowered for word in self.vocabulary)

    __call__ = is_in_scope


default_gate = KeywordDomainGate()


def is_in_scope(text: Any) -> bool:
    """True when text mentions the copper domain."""
    return default_gate.is_in_scope(text)
