"""Extract word pronunciations from phone sequences with word-boundary markers."""

import logging
from typing import List, NamedTuple, Optional, Sequence

logger = logging.getLogger(__name__)


class Pronunciation(NamedTuple):
    """Phones of one word; word 0 marks phones outside any word."""
    word: int
    phones: List[int]


def convert_phnx_to_prons(phnx: Sequence[int],
                          words: Sequence[int],
                          word_start_sym: int,
                          word_end_sym: int) -> Optional[List[Pronunciation]]:
    """Pair the word-bracketed groups of a phone sequence with words.

    Phones between `word_start_sym` and `word_end_sym` are the pronunciation
    of the next word in `words`; runs of phones outside the markers (e.g.
    optional silence) get word 0.

    Args:
        phnx: Phone sequence with word-boundary markers
        words: Word ids, none of them 0
        word_start_sym: Marker opening a word
        word_end_sym: Marker closing a word

    Returns:
        Pronunciations in order, or None if the sequences do not match
    """
    prons = []
    i = 0
    j = 0
    n = len(phnx)
    while i < n:
        if phnx[i] == 0:
            logger.warning(f"Phone sequence has a zero at position {i}")
            return None

        if phnx[i] == word_start_sym:
            if j >= len(words):
                logger.warning("Phone sequence has more words than the word sequence")
                return None
            if words[j] == 0:
                logger.warning(f"Word sequence has a zero at position {j}")
                return None
            word = words[j]
            j += 1
            i += 1
            phones = []
            closed = False
            while i < n:
                if phnx[i] == 0 or phnx[i] == word_start_sym:
                    logger.warning(f"Unexpected symbol {phnx[i]} inside word {word}")
                    return None
                if phnx[i] == word_end_sym:
                    i += 1
                    closed = True
                    break
                phones.append(phnx[i])
                i += 1
            if not closed:
                logger.warning(f"Word {word} is not closed by a word-end marker")
                return None
            prons.append(Pronunciation(word, phones))

        elif phnx[i] == word_end_sym:
            logger.warning(f"Word-end marker without word-start marker at position {i}")
            return None

        else:
            phones = []
            while i < n and phnx[i] not in (0, word_start_sym, word_end_sym):
                phones.append(phnx[i])
                i += 1
            prons.append(Pronunciation(0, phones))

    if j != len(words):
        logger.warning(f"Phone sequence has {j} words, word sequence has {len(words)}")
        return None
    return prons
