"""Per-attempt question and option ordering.

The shared question bank is never mutated. Each attempt stores its own
question order and, per question, a permutation of original option indices.
Displayed letters and the per-attempt answer key are derived from those.
"""

import random
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from examhub.models import MCQQuestion
from examhub.services.scoring import LETTERS, index_to_letter, letter_to_index


@dataclass
class Paper:
    question_order: List[int]
    option_orders: Dict[str, List[int]] = field(default_factory=dict)


def _rng(attempt_id: int, question_id: Optional[int] = None) -> random.Random:
    seed = f"attempt:{attempt_id}"
    if question_id is not None:
        seed = f"{seed}:question:{question_id}"
    return random.Random(seed)


def assemble_paper(
    attempt_id: int,
    questions: Sequence[MCQQuestion],
    has_shuffle: bool,
    has_random: bool,
) -> Paper:
    """Build the reproducible paper for one attempt.

    ``questions`` must be in exam order. The same attempt id always yields the
    same paper.
    """
    order = [q.id for q in questions]
    if has_shuffle:
        _rng(attempt_id).shuffle(order)

    option_orders: Dict[str, List[int]] = {}
    if has_random:
        for q in questions:
            permutation = list(range(len(q.options)))
            _rng(attempt_id, q.id).shuffle(permutation)
            option_orders[str(q.id)] = permutation

    return Paper(question_order=order, option_orders=option_orders)


def permutation_for(option_orders: Mapping[str, List[int]], question: MCQQuestion) -> List[int]:
    return list(option_orders.get(str(question.id)) or range(len(question.options)))


def displayed_options(option_orders: Mapping[str, List[int]], question: MCQQuestion) -> List[dict]:
    """Options as shown to the attempt: ``[{"letter": "A", "text": ...}, ...]``."""
    return [
        {"letter": index_to_letter(position), "text": question.options[original]}
        for position, original in enumerate(permutation_for(option_orders, question))
    ]


def displayed_answer(option_orders: Mapping[str, List[int]], question: MCQQuestion) -> Optional[str]:
    """Letter under which the correct option appears for this attempt."""
    if not question.answer or question.answer not in LETTERS:
        return None
    original = letter_to_index(question.answer)
    permutation = permutation_for(option_orders, question)
    if original not in permutation:
        return None
    return index_to_letter(permutation.index(original))


def attempt_answer_key(
    option_orders: Mapping[str, List[int]],
    questions: Sequence[MCQQuestion],
) -> Dict[int, str]:
    key = {}
    for q in questions:
        letter = displayed_answer(option_orders, q)
        if letter is not None:
            key[q.id] = letter
    return key
