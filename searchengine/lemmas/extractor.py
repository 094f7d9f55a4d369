import re
from collections import Counter
from typing import Dict, Set

from searchengine.lemmas.morphology import Morphology

NON_ALPHABET_RE = re.compile(r"[^а-яё\s]")
WHITESPACE_RE = re.compile(r"\s+")
WORD_RE = re.compile(r"^[а-яё]{2,}$")


class LemmaExtractor:
    """Turns text into lemma counts using a morphology capability."""

    def __init__(self, morphology: Morphology):
        self.morphology = morphology

    def extract(self, text: str) -> Dict[str, int]:
        """Return ``{lemma: occurrences}`` for the Russian words in ``text``.

        Particle-like words (conjunctions, prepositions, interjections,
        particles) are dropped. A word with several base forms contributes
        one occurrence to each of them.
        """
        counts: Counter = Counter()
        for word in self._split_words(text):
            if not WORD_RE.match(word):
                continue
            forms = self.morphology.normalize(word)
            if forms.is_particle:
                continue
            counts.update(set(forms.base_forms))
        return dict(counts)

    def query_lemmas(self, text: str) -> Set[str]:
        return set(self.extract(text))

    @staticmethod
    def _split_words(text: str) -> list[str]:
        cleaned = NON_ALPHABET_RE.sub(" ", text.lower())
        cleaned = WHITESPACE_RE.sub(" ", cleaned).strip()
        return cleaned.split(" ") if cleaned else []
