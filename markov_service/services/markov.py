"""
Markov chain text generator (CPU-only).

Builds an n-gram context tree from tokenized sentences and generates new
sentences that follow the corpus statistics without copying it: candidates
that are too short, duplicated, or present verbatim in the input are
rejected, and the search backtracks through the partial output until a
valid continuation is found or the attempt budget runs out.
Training: from text or a list of sentences; persistence: JSON-friendly.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

from markov_service.config import settings
from markov_service.services import text as text_utils
from markov_service.services.context_tree import ContextNode, ContextTree
from markov_service.services.errors import (
    AttemptsExhaustedError,
    EmptyModelError,
    GenerationError,
    InvalidSearchStateError,
    SeedExhaustedError,
)
from markov_service.services.randgen import SeededRandom

logger = logging.getLogger(__name__)

Tokenizer = Callable[[str], List[str]]
Untokenizer = Callable[[Sequence[str]], str]
SentenceSplitter = Callable[[str], List[str]]
TokenPath = Union[str, Sequence[str]]


@dataclass
class GenerationOptions:
    """Per-call generation settings."""
    min_length: int = field(default_factory=lambda: settings.MARKOV_MIN_LENGTH)
    max_length: int = field(default_factory=lambda: settings.MARKOV_MAX_LENGTH)
    temperature: Optional[float] = None
    allow_duplicates: bool = False
    seed: Optional[TokenPath] = None
    disable_input_checks: Optional[bool] = None  # None: use the model's flag

    def validate(self):
        if self.temperature is not None and self.temperature <= 0:
            raise ValueError("Temperature option must be greater than 0")
        if self.min_length < 1:
            raise ValueError("min_length must be >= 1")
        if self.max_length < self.min_length:
            raise ValueError(
                f"max_length ({self.max_length}) must be >= min_length ({self.min_length})"
            )


class Outcome(Enum):
    """Result of one step of the generation search."""
    ACCEPT = "accept"    # keep extending
    REJECT = "reject"    # soft failure: retry here or backtrack
    ABORT = "abort"      # unrecoverable, raise `error`


@dataclass
class Step:
    outcome: Outcome
    reason: str = ""
    force_backtrack: bool = False
    error: Optional[GenerationError] = None

    @classmethod
    def accept(cls) -> "Step":
        return cls(Outcome.ACCEPT)

    @classmethod
    def reject(cls, reason: str, force_backtrack: bool = False) -> "Step":
        return cls(Outcome.REJECT, reason, force_backtrack)

    @classmethod
    def abort(cls, error: GenerationError) -> "Step":
        return cls(Outcome.ABORT, str(error), error=error)


class MarkovModel:
    """
    N-gram model over a context tree with constrained generation.

    Usage:
        model = MarkovModel(3, rng=SeededRandom(42))
        model.add_text(open("corpus.txt").read())
        print(model.generate())
        print(model.generate(3, temperature=0.5))
    """

    def __init__(
        self,
        order: Optional[int] = None,
        text: Optional[Union[str, Sequence[str]]] = None,
        *,
        max_length_match: Optional[int] = None,
        max_attempts: Optional[int] = None,
        disable_input_checks: bool = False,
        temperature: Optional[float] = None,
        trace: Optional[bool] = None,
        rng: Optional[SeededRandom] = None,
        tokenize: Optional[Tokenizer] = None,
        untokenize: Optional[Untokenizer] = None,
        split_sentences: Optional[SentenceSplitter] = None,
    ):
        """
        Initialize an empty model (optionally with text).

        Args:
            order: n-gram size, >= 2
            text: Raw text or list of sentences to ingest immediately
            max_length_match: Longest run of output tokens allowed to match the input (>= order)
            max_attempts: Retry budget for one generate() call
            disable_input_checks: Allow sentences that appear verbatim in the input
            temperature: Default sampling temperature (> 0); None means linear weighting
            trace: Log every step of the generation search
            rng: Random source; defaults to one seeded from settings
            tokenize / untokenize / split_sentences: Text collaborators
        """
        self.order = settings.MARKOV_DEFAULT_ORDER if order is None else order
        if self.order < 2:
            raise ValueError(f"minimum order is 2, got {self.order}")
        if max_length_match is not None and max_length_match < self.order:
            raise ValueError(
                f"max_length_match must be >= order ({self.order}), got {max_length_match}"
            )
        if temperature is not None and temperature <= 0:
            raise ValueError("Temperature must be greater than 0")

        self.max_length_match = max_length_match
        self.max_attempts = max_attempts or settings.MARKOV_MAX_ATTEMPTS
        self.disable_input_checks = disable_input_checks
        self.temperature = temperature
        self.trace = settings.MARKOV_TRACE if trace is None else trace
        self.rng = rng or SeededRandom(settings.MARKOV_RANDOM_SEED)

        self.tokenize = tokenize or text_utils.tokenize
        self.untokenize = untokenize or text_utils.untokenize
        self.split_sentences = split_sentences or text_utils.split_sentences

        self.tree = ContextTree()
        self.sentence_starts: List[str] = []  # duplicates kept: frequency biases starts
        self.sentence_ends: Set[str] = set()
        # raw token stream, kept for verbatim-copy checks
        self.input: Optional[List[str]] = (
            [] if (not disable_input_checks or max_length_match) else None
        )

        if text:
            self.add_text(text)

    # --- ingestion ---

    def add_text(
        self,
        text: Union[str, Sequence[str]],
        multiplier: int = 1,
    ) -> "MarkovModel":
        """
        Add text to the model.

        A string is split into sentences first; a sequence is taken as one
        sentence per element.

        Args:
            text: Raw text or list of sentences
            multiplier: Number of times to count the text

        Returns:
            self, for chaining
        """
        if multiplier < 1:
            raise ValueError("multiplier must be >= 1")

        sentences = self.split_sentences(text) if isinstance(text, str) else list(text)

        words: List[str] = []
        for sentence in sentences:
            tokens = self.tokenize(sentence)
            if not tokens:
                continue
            self.sentence_starts.extend([tokens[0]] * multiplier)
            self.sentence_ends.add(tokens[-1])
            words.extend(tokens)

        if words:
            self.treeify(words, weight=multiplier)
            if self.input is not None:
                self.input.extend(words)

        logger.info(
            f"[Markov] Added {len(sentences)} sentences ({len(words)} tokens x{multiplier}), "
            f"size={self.size()}"
        )
        return self

    def treeify(self, tokens: Sequence[str], weight: int = 1):
        """
        Insert every `order`-token window of `tokens` into the tree.

        Windows running past the end wrap around to the start of `tokens`;
        the wrapped positions are inserted as hidden nodes.
        """
        total = len(tokens)
        root = self.tree.root
        for i in range(total):
            node = root
            for j in range(self.order):
                pos = i + j
                if pos < total:
                    node = self.tree.add_child(node, tokens[pos], weight)
                else:
                    node = self.tree.add_child(node, tokens[pos % total], weight, hidden=True)

    # --- queries ---

    def path_to(self, path: TokenPath) -> Optional[ContextNode]:
        """
        Node reached by following the last order-1 tokens of `path` from the root.

        Returns the root for an empty path and None when the context was
        never seen.
        """
        if isinstance(path, str):
            path = [path]
        if not path:
            return self.tree.root
        return self.tree.walk(list(path)[-(self.order - 1):])

    def is_end(self, node: Optional[Union[ContextNode, str]]) -> bool:
        if node is None:
            return False
        token = node if isinstance(node, str) else node.token
        return token in self.sentence_ends

    def probability(self, data: TokenPath) -> float:
        """
        Probability of a single token (unigram), or of the last token of a
        sequence shorter than `order` given the tokens before it.

        Returns 0 for unknown tokens or contexts.
        """
        if not data:
            return 0.0
        if isinstance(data, str):
            node = self.tree.child(self.tree.root, data)
        else:
            node = self.path_to(data)
        if node is None or node.is_root():
            return 0.0
        return self.tree.conditional_probability(node)

    def probabilities(
        self,
        path: TokenPath,
        temperature: Optional[float] = None,
    ) -> Dict[str, float]:
        """
        Map every possible next token after `path` to its probability.

        Args:
            path: Context as a string (tokenized) or list of tokens
            temperature: Optional softmax temperature (> 0)

        Returns:
            {token: probability}; empty when the context is unknown
        """
        if temperature is not None and temperature <= 0:
            raise ValueError("Temperature must be greater than 0")
        if isinstance(path, str):
            path = self.tokenize(path)

        parent = self.path_to(path)
        if parent is None:
            return {}

        children = self.tree.children(parent, include_hidden=False)
        dist = self.rng.weighted_distribution([c.count for c in children], temperature)
        return {c.token: p for c, p in zip(children, dist)}

    def completions(
        self,
        pre: TokenPath,
        post: Optional[TokenPath] = None,
    ) -> List[str]:
        """
        Possible tokens after `pre` (and before `post`, if given).

        With only `pre`, all next tokens ordered by descending probability.
        With `post`, the unordered tokens w for which pre + [w] + post
        occurs in the model.
        """
        pre = self.tokenize(pre) if isinstance(pre, str) else list(pre)
        if post is None:
            probs = self.probabilities(pre)
            return sorted(probs, key=lambda t: probs[t], reverse=True)

        post = self.tokenize(post) if isinstance(post, str) else list(post)
        if len(pre) + len(post) > self.order:
            raise ValueError(
                f"Sum of pre and post lengths must be <= order ({self.order}), "
                f"was {len(pre) + len(post)}"
            )

        node = self.path_to(pre)
        if node is None:
            logger.warning(f"[Markov] Unable to find nodes in pre: {pre}")
            return []

        return [
            nxt.token
            for nxt in self.tree.children(node, include_hidden=False)
            if self._sequence_exists(pre + [nxt.token] + post)
        ]

    def _sequence_exists(self, tokens: List[str]) -> bool:
        """True when every order-sized window of `tokens` is a visible path."""
        windows = [tokens] if len(tokens) <= self.order else [
            tokens[i:i + self.order] for i in range(len(tokens) - self.order + 1)
        ]
        for window in windows:
            node = self.tree.walk(window)
            if node is None or node.hidden:
                return False
        return True

    def size(self) -> int:
        """Number of tokens in the model."""
        return self.tree.child_count(self.tree.root, ignore_hidden=True)

    # --- generation ---

    def generate(
        self,
        count: Optional[int] = None,
        *,
        min_length: Optional[int] = None,
        max_length: Optional[int] = None,
        temperature: Optional[float] = None,
        allow_duplicates: bool = False,
        seed: Optional[TokenPath] = None,
        disable_input_checks: Optional[bool] = None,
    ) -> Union[str, List[str]]:
        """
        Generate new sentences from the model.

        Args:
            count: Number of sentences; None or 1 returns a single string
            min_length: Minimum tokens per sentence
            max_length: Maximum tokens per sentence
            temperature: Sampling temperature (> 0); default is the model's
            allow_duplicates: Allow the same sentence twice in one result
            seed: Starting text or tokens for the first sentence
            disable_input_checks: Allow sentences present verbatim in the input

        Returns:
            A sentence string, or a list of `count` sentence strings

        Raises:
            ValueError: invalid options
            EmptyModelError: no text, no starts left, or unknown seed
            AttemptsExhaustedError / SeedExhaustedError: search gave up
        """
        if count is not None and count < 1:
            raise ValueError(f"count must be >= 1, got {count}")

        options = GenerationOptions(
            temperature=self.temperature if temperature is None else temperature,
            allow_duplicates=allow_duplicates,
            seed=seed,
            disable_input_checks=disable_input_checks,
        )
        if min_length is not None:
            options.min_length = min_length
        if max_length is not None:
            options.max_length = max_length
        options.validate()

        if not self.sentence_starts:
            raise EmptyModelError("Model has no sentence starts, add text first")

        run = _GenerationRun(self, count or 1, options)
        sentences = run.execute()

        if count is None or count == 1:
            return self.untokenize([t for s in sentences for t in s]).strip()
        return [self.untokenize(s).strip() for s in sentences]

    # --- display / persistence ---

    def to_display_string(self, node: Optional[ContextNode] = None, sort: bool = False) -> str:
        """Indented dump of the tree (or the subtree under `node`)."""
        return self.tree.as_tree(node, sort)

    def __str__(self) -> str:
        return self.to_display_string()

    def to_json(self) -> str:
        data = {
            "order": self.order,
            "max_length_match": self.max_length_match,
            "max_attempts": self.max_attempts,
            "disable_input_checks": self.disable_input_checks,
            "temperature": self.temperature,
            "sentence_starts": self.sentence_starts,
            "sentence_ends": sorted(self.sentence_ends),
            "input": self.input,
            "root": self.tree.to_dict(),
        }
        return json.dumps(data)

    @classmethod
    def from_json(cls, s: str, **kwargs) -> "MarkovModel":
        """
        Rebuild a model saved with to_json().

        Extra keyword arguments (rng, tokenize, ...) go to the constructor.
        """
        raw = json.loads(s)
        model = cls(
            raw.get("order", 2),
            max_length_match=raw.get("max_length_match"),
            max_attempts=raw.get("max_attempts"),
            disable_input_checks=raw.get("disable_input_checks", False),
            temperature=raw.get("temperature"),
            **kwargs,
        )
        model.tree = ContextTree.from_dict(raw.get("root", {}))
        model.sentence_starts = list(raw.get("sentence_starts", []))
        model.sentence_ends = set(raw.get("sentence_ends", []))
        model.input = raw.get("input")
        return model

    to_serialized_form = to_json
    from_serialized_form = from_json


class _GenerationRun:
    """
    State of one generate() call.

    `tokens` holds the nodes emitted so far, `boundaries` the token count
    at the end of each accepted sentence, and `marks` the (node, prefix)
    pairs already tried. Marks live only as long as the run.
    """

    def __init__(self, model: MarkovModel, count: int, options: GenerationOptions):
        self.model = model
        self.tree = model.tree
        self.count = count
        self.options = options

        checks_disabled = (
            model.disable_input_checks
            if options.disable_input_checks is None
            else options.disable_input_checks
        )
        if not checks_disabled and model.input is None:
            raise ValueError(
                "Input checks need the corpus tokens, which this model did not keep "
                "(it was built with disable_input_checks=True)"
            )
        self.check_input = not checks_disabled

        self.tokens: List[ContextNode] = []
        self.boundaries: List[int] = []
        self.marks: Set[Tuple[int, Tuple[int, ...]]] = set()
        self.tries = 0
        self.min_index = 0

        seed = options.seed
        if isinstance(seed, str):
            seed = model.tokenize(seed)
        self.seed_tokens: List[str] = list(seed or [])

    # --- helpers ---

    @property
    def successes(self) -> int:
        return len(self.boundaries)

    def _prefix(self) -> Tuple[int, ...]:
        return tuple(n.index for n in self.tokens)

    def _mark(self, node: ContextNode):
        self.marks.add((node.index, self._prefix()))

    def _unmarked(self) -> Callable[[ContextNode], bool]:
        prefix = self._prefix()
        return lambda node: (node.index, prefix) not in self.marks

    def _sentence_start(self) -> int:
        return self.boundaries[-1] if self.boundaries else 0

    def _words(self, nodes: Sequence[ContextNode]) -> List[str]:
        return [n.token for n in nodes]

    def _at_boundary(self) -> bool:
        """True when the output is empty or ends with a committed sentence."""
        return not self.tokens or (
            bool(self.boundaries) and self.boundaries[-1] == len(self.tokens)
        )

    def _frontier(self) -> List[ContextNode]:
        if self._at_boundary():
            root = self.tree.root
            unmarked = self._unmarked()
            starts = {s: self.tree.child(root, s) for s in self.model.sentence_starts}
            return [n for n in starts.values() if unmarked(n)]

        parent = self.model.path_to(self._words(self.tokens))
        if parent is None:
            return []
        return self.tree.children(parent, predicate=self._unmarked(), include_hidden=False)

    def _trace(self, message: str):
        if self.model.trace:
            logger.info(f"[Markov] {message}")

    # --- search ---

    def execute(self) -> List[List[str]]:
        self._resolve(self._select_start())
        while self.successes < self.count:
            if self._at_boundary():
                self._resolve(self._select_start())
            else:
                self._resolve(self._extend())

        self._trace(f"done: {self.successes} sentences, {self.tries} tries")
        self.marks.clear()

        sentences = []
        start = 0
        for end in self.boundaries:
            sentences.append(self._words(self.tokens[start:end]))
            start = end
        return sentences

    def _resolve(self, step: Step):
        while step.outcome is Outcome.REJECT:
            step = self._fail(step)
        if step.outcome is Outcome.ABORT:
            raise step.error

    def _select_start(self) -> Step:
        if self.seed_tokens and not self.tokens:
            if not self.model._sequence_exists(self.seed_tokens):
                return Step.abort(EmptyModelError(
                    f"Seed not found in model: {self.seed_tokens}"
                ))
            nodes = [
                self.model.path_to(self.seed_tokens[: i + 1])
                for i in range(len(self.seed_tokens))
            ]
            self.tokens = nodes
            self.min_index = len(nodes)
            return Step.accept()

        if self.tokens and not self.model.is_end(self.tokens[-1]):
            raise InvalidSearchStateError(
                f"Invalid call to select start: {self._words(self.tokens)}"
            )

        root = self.tree.root
        unmarked = self._unmarked()
        usable = [s for s in self.model.sentence_starts if unmarked(self.tree.child(root, s))]
        if not usable:
            return Step.abort(EmptyModelError("No valid sentence-starts remaining"))

        start = self.tree.child(root, self.model.rng.choice(usable))
        self._mark(start)
        if self._breaks_length_match(start):
            return Step.reject(f"mlm-fail({self.model.max_length_match})")
        self.tokens.append(start)
        self._trace(f"start: {start.token}")
        return Step.accept()

    def _extend(self) -> Step:
        sent_start = self._sentence_start()
        if len(self.tokens) - sent_start >= self.options.max_length:
            return Step.reject("too-long", force_backtrack=True)

        parent = self.model.path_to(self._words(self.tokens))
        if parent is None:
            return Step.reject("no-context", force_backtrack=True)

        unmarked = self._unmarked()
        if not self.tree.children(parent, predicate=unmarked, include_hidden=False):
            return Step.reject("no-candidates", force_backtrack=True)

        nxt = self.tree.select_weighted(
            parent, self.model.rng, predicate=unmarked, temperature=self.options.temperature
        )

        if self._breaks_length_match(nxt):
            self._mark(nxt)
            return Step.reject(f"mlm-fail({self.model.max_length_match})")

        if self.model.is_end(nxt):
            return self._complete_sentence(nxt)

        self.tokens.append(nxt)
        self._trace(f"{len(self.tokens) - sent_start} {nxt.token}")
        return Step.accept()

    def _breaks_length_match(self, candidate: ContextNode) -> bool:
        mlm = self.model.max_length_match
        if not mlm or len(self.tokens) < mlm:
            return False
        window = self._words(self.tokens[-mlm:]) + [candidate.token]
        return is_sub_array(window, self.model.input)

    def _complete_sentence(self, end: ContextNode) -> Step:
        self._mark(end)
        sent_start = self._sentence_start()
        sentence = self._words(self.tokens[sent_start:]) + [end.token]

        if len(sentence) < self.options.min_length:
            return Step.reject(f"too-short (pop: {end.token})")

        if self.check_input and is_sub_array(sentence, self.model.input):
            return Step.reject(f"in-input (pop: {end.token})")

        if not self.options.allow_duplicates and is_sub_array(
            sentence, self._words(self.tokens[:sent_start])
        ):
            return Step.reject(f"duplicate (pop: {end.token})")

        self.tokens.append(end)
        self.boundaries.append(len(self.tokens))
        self._trace(
            f'OK ({self.successes}/{self.count}) "{self.model.untokenize(sentence)}" '
            f"boundaries={self.boundaries}"
        )
        return Step.accept()

    def _fail(self, step: Step) -> Step:
        self.tries += 1
        if self.tries >= self.model.max_attempts:
            return Step.abort(AttemptsExhaustedError(self.tries, self.successes))

        frontier = self._frontier()
        self._trace(
            f"Fail: {step.reason} -> {self._words(self.tokens[self._sentence_start():])} "
            f"{self.tries} tries, {self.successes} successes, frontier={len(frontier)}"
            + (" forceBacktrack" if step.force_backtrack else "")
        )

        if step.force_backtrack or not frontier:
            return self._backtrack()
        return Step.accept()

    def _backtrack(self) -> Step:
        """
        Pop tokens until some prefix still has untried children.

        Each popped node is marked as exhausted under the prefix that
        remains. An emptied output picks a new sentence start; reaching the
        seed with nothing left to try is fatal.
        """
        for _ in range(settings.MARKOV_MAX_BACKTRACK_STEPS):
            if not self.tokens:
                break
            if self.min_index and len(self.tokens) <= self.min_index:
                # never pop into the seed
                if not self._frontier():
                    return Step.abort(SeedExhaustedError(
                        f"No valid continuation for seed {self.seed_tokens}"
                    ))
                return Step.accept()
            last = self.tokens.pop()
            self._mark(last)
            if self.boundaries and self.boundaries[-1] > len(self.tokens):
                self.boundaries.pop()

            frontier = self._frontier()
            self._trace(
                f'backtrack#{len(self.tokens)} pop "{last.token}" '
                f"frontier={[n.token for n in frontier]}"
            )

            if self.min_index and len(self.tokens) <= self.min_index:
                if not frontier:
                    return Step.abort(SeedExhaustedError(
                        f"No valid continuation for seed {self.seed_tokens}"
                    ))
                return Step.accept()

            if not self.tokens:
                self.boundaries = []
                return self._select_start()

            if frontier:
                return Step.accept()

        return Step.abort(InvalidSearchStateError(
            f"Invalid state in backtrack() {self._words(self.tokens)}"
        ))


def is_sub_array(find: Sequence[str], array: Optional[Sequence[str]]) -> bool:
    """True when `find` occurs as a contiguous run inside `array`."""
    if not array or not find:
        return False
    size = len(find)
    find = list(find)
    first = find[0]
    for i in range(len(array) - size + 1):
        if array[i] == first and list(array[i:i + size]) == find:
            return True
    return False


def train_from_corpus(
    lines: Union[str, List[str]],
    order: Optional[int] = None,
    multiplier: int = 1,
    **kwargs,
) -> MarkovModel:
    model = MarkovModel(order, **kwargs)
    model.add_text(lines, multiplier)
    return model
