from __future__ import annotations

import pytest

from autodeck.deck.lod import get_lod
from autodeck.deck.runtime.budget import (
    PREFLIGHT_MESSAGE,
    BudgetExceeded,
    check_preflight,
    estimate_tokens,
    message_budget,
    producer_max_tokens,
)


def test_estimate_tokens_rounds_up_quarter_length():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_preflight_passes_under_limit():
    assert check_preflight(["a" * 400, "", "b" * 4], limit=101) == 101


def test_preflight_rejects_over_limit():
    with pytest.raises(BudgetExceeded) as excinfo:
        check_preflight(["a" * 800_004])

    assert excinfo.value.estimated_tokens == 200_001
    assert excinfo.value.limit == 180_000
    assert str(excinfo.value) == PREFLIGHT_MESSAGE


def test_producer_max_tokens_per_batch():
    standard = get_lod("standard")
    # ceil(250 * 1.5 * 1.3) = 488
    assert producer_max_tokens(12, standard) == 12 * 488 + 500
    assert producer_max_tokens(6, standard) == 6 * 488 + 500


def test_producer_max_tokens_capped_at_ceiling():
    detailed = get_lod("detailed")
    assert producer_max_tokens(200, detailed) == 64_000
    assert producer_max_tokens(200, detailed, ceiling=10_000) == 10_000


def test_message_budget_reserves_system_and_output():
    assert message_budget(["x" * 4000], 16_000) == 200_000 - 2_000 - 1_000 - 16_000
    assert message_budget(["x" * 1_000_000], 16_000) == 0
