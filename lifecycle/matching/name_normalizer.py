"""
Canonical event titles for fuzzy comparison.
"""

import re


_PARENTHETICAL = re.compile(r"\([^()]*\)")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


class NameNormalizer:
    """
    Canonicalize event titles so that "Non-Farm Payrolls (NFP)" and
    "Non Farm Payrolls" compare equal.
    """
    
    @staticmethod
    def normalize(title: str) -> str:
        """
        Lowercase, drop parenthetical segments, collapse every run of
        non-alphanumeric characters to a single space and trim.
        
        Total and idempotent: normalize(normalize(t)) == normalize(t).
        """
        text = (title or "").lower()
        
        # Innermost groups first so nested parentheses disappear completely
        previous = None
        while previous != text:
            previous = text
            text = _PARENTHETICAL.sub(" ", text)
        
        return _NON_ALNUM.sub(" ", text).strip()


normalize = NameNormalizer.normalize
