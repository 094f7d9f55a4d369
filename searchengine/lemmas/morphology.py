"""Morphological normalization behind a small capability interface.

The extractor only needs ``normalize(word)``; the Russian analyzer backed by
pymorphy3 is the production implementation, tests plug in a dictionary.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import FrozenSet, Protocol, Tuple

import pymorphy3
from loguru import logger

# pymorphy POS tags of words that carry no search value:
# conjunction, preposition, interjection, particle
PARTICLE_CLASSES = frozenset({"CONJ", "PREP", "INTJ", "PRCL"})


class MorphologyUnavailableError(RuntimeError):
    """Raised when the analyzer or its dictionaries cannot be loaded."""


@dataclass(frozen=True)
class WordForms:
    base_forms: Tuple[str, ...]
    grammatical_classes: FrozenSet[str] = frozenset()

    @property
    def is_particle(self) -> bool:
        return bool(self.grammatical_classes & PARTICLE_CLASSES)


class Morphology(Protocol):
    def normalize(self, word: str) -> WordForms:
        ...


class RussianMorphology:
    def __init__(self, cache_size: int = 100_000):
        try:
            self._analyzer = pymorphy3.MorphAnalyzer(lang="ru")
        except Exception as exc:
            raise MorphologyUnavailableError(f"Russian morphology is unavailable: {exc}") from exc

        self._analyze_cached = lru_cache(maxsize=cache_size)(self._analyze)
        logger.info("Russian morphology analyzer loaded")

    def normalize(self, word: str) -> WordForms:
        return self._analyze_cached(word)

    def _analyze(self, word: str) -> WordForms:
        base_forms: list[str] = []
        classes: set[str] = set()
        for parse in self._analyzer.parse(word):
            if parse.normal_form not in base_forms:
                base_forms.append(parse.normal_form)
            if parse.tag.POS:
                classes.add(str(parse.tag.POS))
        return WordForms(tuple(base_forms), frozenset(classes))
