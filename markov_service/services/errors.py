"""
Failures raised by the Markov model.

Configuration mistakes are plain ValueErrors; everything here means a
generation request could not be satisfied.
"""


class GenerationError(RuntimeError):
    """Base class for generation failures."""


class EmptyModelError(GenerationError):
    """Nothing to choose from: no sentence starts, unknown seed, empty frontier."""


class NoCandidatesError(EmptyModelError):
    """Weighted selection was asked to choose from an empty child set."""


class AttemptsExhaustedError(GenerationError):
    """The retry budget ran out before enough sentences were accepted."""

    def __init__(self, tries: int, successes: int):
        self.tries = tries
        self.successes = successes
        message = f"Failed after {tries} tries"
        if successes:
            message += f" and {successes} successes"
        super().__init__(message + ", you may need to adjust options or add more text")


class SeedExhaustedError(GenerationError):
    """Every continuation of the seed has been tried."""


class InvalidSearchStateError(GenerationError):
    """Backtracking ran past its step budget; the search state is corrupt."""
