"""
Token Differ v1.0.0
===================
Minimal edit scripts between two token streams.

Weighted LCS over tokens: a matched protected token scores higher than a
matched word, and a matched word higher than matched whitespace, so among
equally short scripts the one that keeps citations, math and anchors in
`equal` runs wins. Common prefix/suffix runs are stripped first, which makes
near-identical documents cheap.

When the remaining middle would need more than `diff_max_cells` table cells,
the tokens are encoded one character per distinct token and handed to
diff-match-patch, which bounds the work with its own timeout.
"""

from typing import List, Optional, Sequence, Tuple

import diff_match_patch as dmp_module

from .config_logging import get_logger, get_config, MergeConfig
from .models import Token, EditOp, EQUAL, INSERT, DELETE
from .tokenizer import tokenize

logger = get_logger('critic_merge.differ')

__version__ = "1.0.0"

WHITESPACE_WEIGHT = 1
WORD_WEIGHT = 2

# Highest code point usable for token encoding
_MAX_ENCODED_TOKENS = 0x10FFFF - 1


class TokenDiffer:
    """
    Edit-script engine over token sequences.
    """

    def __init__(self, config: Optional[MergeConfig] = None):
        """
        Initialize the differ.

        Args:
            config: Engine configuration (global config when omitted)
        """
        self.config = config or get_config()
        self.protected_weight = WORD_WEIGHT + max(0, self.config.protected_bonus)

        self.dmp = dmp_module.diff_match_patch()
        self.dmp.Diff_Timeout = self.config.diff_timeout
        self.dmp.Diff_EditCost = 4

    def diff(self, old: Sequence[Token], new: Sequence[Token]) -> List[EditOp]:
        """
        Compute the edit script turning old into new.

        Args:
            old: Original token stream
            new: Revised token stream

        Returns:
            Alternating runs. Within each stretch between two equal runs,
            the delete run (if any) comes before the insert run.
        """
        old = list(old)
        new = list(new)

        prefix = _common_prefix(old, new)
        suffix = _common_suffix(old[prefix:], new[prefix:])

        old_mid = old[prefix:len(old) - suffix]
        new_mid = new[prefix:len(new) - suffix]

        steps: List[Tuple[str, Token]] = [(EQUAL, t) for t in old[:prefix]]

        if old_mid or new_mid:
            cells = (len(old_mid) + 1) * (len(new_mid) + 1)
            if not old_mid or not new_mid:
                steps.extend((DELETE, t) for t in old_mid)
                steps.extend((INSERT, t) for t in new_mid)
            elif cells <= self.config.diff_max_cells:
                steps.extend(self._lcs_steps(old_mid, new_mid))
            else:
                logger.warning(
                    f"LCS table of {cells} cells exceeds cap; using diff-match-patch",
                    cells=cells
                )
                steps.extend(self._dmp_steps(old_mid, new_mid))

        steps.extend((EQUAL, t) for t in old[len(old) - suffix:])

        ops = _coalesce(steps)
        logger.debug(
            f"Diffed {len(old)} x {len(new)} tokens into {len(ops)} runs",
            old_tokens=len(old), new_tokens=len(new), runs=len(ops)
        )
        return ops

    def diff_texts(self, old_text: str, new_text: str, granularity: Optional[str] = None) -> List[EditOp]:
        """
        Tokenize both texts and diff them.

        Args:
            old_text: Original text
            new_text: Revised text
            granularity: 'word' or 'sentence' (config default when omitted)

        Returns:
            Edit script as a list of EditOp runs
        """
        granularity = granularity or self.config.granularity
        return self.diff(
            tokenize(old_text, granularity=granularity),
            tokenize(new_text, granularity=granularity)
        )

    def _weight(self, a: Token, b: Token) -> int:
        if a.is_protected or b.is_protected:
            return self.protected_weight
        if a.is_space:
            return WHITESPACE_WEIGHT
        return WORD_WEIGHT

    def _lcs_steps(self, old: List[Token], new: List[Token]) -> List[Tuple[str, Token]]:
        """
        Weighted LCS with a forward walk.

        score[i][j] is the best alignment score of old[i:] against new[j:].
        """
        n, m = len(old), len(new)
        score = [[0] * (m + 1) for _ in range(n + 1)]

        for i in range(n - 1, -1, -1):
            row = score[i]
            below = score[i + 1]
            a = old[i]
            for j in range(m - 1, -1, -1):
                best = below[j] if below[j] >= row[j + 1] else row[j + 1]
                if a.text == new[j].text:
                    matched = below[j + 1] + self._weight(a, new[j])
                    if matched > best:
                        best = matched
                row[j] = best

        steps = []
        i = j = 0
        while i < n and j < m:
            a, b = old[i], new[j]
            if a.text == b.text and score[i][j] == score[i + 1][j + 1] + self._weight(a, b):
                steps.append((EQUAL, a))
                i += 1
                j += 1
            elif score[i + 1][j] >= score[i][j + 1]:
                steps.append((DELETE, a))
                i += 1
            else:
                steps.append((INSERT, b))
                j += 1

        steps.extend((DELETE, t) for t in old[i:])
        steps.extend((INSERT, t) for t in new[j:])
        return steps

    def _dmp_steps(self, old: List[Token], new: List[Token]) -> List[Tuple[str, Token]]:
        """
        Token-level diff through diff-match-patch.

        Same trick as diff_linesToChars: each distinct token text maps to one
        character, the encoded strings are diffed, then decoded back.
        """
        lookup = {}
        old_chars = self._encode(old, lookup)
        new_chars = self._encode(new, lookup)

        if old_chars is None or new_chars is None:
            logger.warning("Too many distinct tokens to encode; replacing the whole region")
            return [(DELETE, t) for t in old] + [(INSERT, t) for t in new]

        diffs = self.dmp.diff_main(old_chars, new_chars, False)

        steps = []
        i = j = 0
        for op, chars in diffs:
            count = len(chars)
            if op == self.dmp.DIFF_EQUAL:
                steps.extend((EQUAL, t) for t in old[i:i + count])
                i += count
                j += count
            elif op == self.dmp.DIFF_DELETE:
                steps.extend((DELETE, t) for t in old[i:i + count])
                i += count
            else:
                steps.extend((INSERT, t) for t in new[j:j + count])
                j += count
        return steps

    @staticmethod
    def _encode(tokens: List[Token], lookup: dict) -> Optional[str]:
        chars = []
        for token in tokens:
            code = lookup.get(token.text)
            if code is None:
                code = len(lookup) + 1
                if code > _MAX_ENCODED_TOKENS:
                    return None
                lookup[token.text] = code
            chars.append(chr(code))
        return ''.join(chars)


def _common_prefix(old: List[Token], new: List[Token]) -> int:
    limit = min(len(old), len(new))
    k = 0
    while k < limit and old[k].text == new[k].text:
        k += 1
    return k


def _common_suffix(old: List[Token], new: List[Token]) -> int:
    limit = min(len(old), len(new))
    k = 0
    while k < limit and old[-1 - k].text == new[-1 - k].text:
        k += 1
    return k


def _coalesce(steps: List[Tuple[str, Token]]) -> List[EditOp]:
    """
    Group per-token steps into runs.

    Deletions and insertions between two equal runs are gathered into one
    delete run followed by one insert run.
    """
    ops: List[EditOp] = []
    equal: List[Token] = []
    deleted: List[Token] = []
    inserted: List[Token] = []

    def flush_changes():
        if deleted:
            ops.append(EditOp(DELETE, tuple(deleted)))
            deleted.clear()
        if inserted:
            ops.append(EditOp(INSERT, tuple(inserted)))
            inserted.clear()

    for kind, token in steps:
        if kind == EQUAL:
            flush_changes()
            equal.append(token)
            continue
        if equal:
            ops.append(EditOp(EQUAL, tuple(equal)))
            equal.clear()
        if kind == DELETE:
            deleted.append(token)
        else:
            inserted.append(token)

    flush_changes()
    if equal:
        ops.append(EditOp(EQUAL, tuple(equal)))
    return ops


def diff_texts(
    old_text: str,
    new_text: str,
    granularity: Optional[str] = None,
    config: Optional[MergeConfig] = None
) -> List[EditOp]:
    """
    Diff two texts.

    Args:
        old_text: Original text
        new_text: Revised text
        granularity: 'word' or 'sentence'
        config: Engine configuration

    Returns:
        Edit script as a list of EditOp runs
    """
    return TokenDiffer(config).diff_texts(old_text, new_text, granularity)
