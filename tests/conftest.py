"""
Shared pytest fixtures for Markov model tests.
"""
from typing import List

import pytest

from markov_service.services.markov import MarkovModel
from markov_service.services.randgen import SeededRandom


# Small corpus with plenty of shared bigrams, so novel sentences exist
ANIMAL_SENTENCES = [
    "The cat sat on the mat.",
    "The dog sat on the rug.",
    "A cat ran to the dog.",
    "A dog ran to the cat.",
    "The bird sat on the dog.",
    "A bird ran to the mat.",
    "The cat ran to the rug.",
    "The dog ran to the bird.",
]

SAMPLE_TEXT = (
    "The universe is full of amazing wonders. "
    "I love exploring new planets and stars! "
    "Would you like to explore the stars together? "
    "The stars are beautiful tonight. "
    "I love the universe and the planets."
)


@pytest.fixture
def animal_sentences() -> List[str]:
    """Sentence list for generation tests."""
    return list(ANIMAL_SENTENCES)


@pytest.fixture
def sample_text() -> str:
    """Raw multi-sentence text for ingestion tests."""
    return SAMPLE_TEXT


@pytest.fixture
def seeded_rng() -> SeededRandom:
    """Deterministic random source."""
    return SeededRandom(42)


@pytest.fixture
def animal_model(animal_sentences, seeded_rng) -> MarkovModel:
    """Order-2 model trained on the animal corpus."""
    return MarkovModel(2, rng=seeded_rng).add_text(animal_sentences)


@pytest.fixture
def cat_model() -> MarkovModel:
    """Order-2 model with a single sentence: every context has one continuation."""
    return MarkovModel(2, rng=SeededRandom(1)).add_text(["the cat sat."])


@pytest.fixture
def ab_model() -> MarkovModel:
    """Order-2 model where 'a' is followed by 'b' or 'c' equally often."""
    return MarkovModel(2, rng=SeededRandom(1)).add_text(["a b.", "a c."])
