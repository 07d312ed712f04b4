"""Tests for token estimation utilities."""

from care_embeddings.utils import apportion_tokens, estimate_tokens, estimate_tokens_batch, total_tokens


def test_estimate_tokens():
    """Test the 4-characters-per-token heuristic rounds up."""
    assert estimate_tokens("") == 0
    assert estimate_tokens("abc") == 1
    assert estimate_tokens("a" * 400) == 100
    assert estimate_tokens("a" * 401) == 101


def test_batch_and_total():
    """Test batch helpers agree with the single-text estimate."""
    texts = ["a" * 8, "b" * 9]
    assert estimate_tokens_batch(texts) == [2, 3]
    assert total_tokens(texts) == 5


def test_apportion_tokens_sums_to_total():
    """Test shares are proportional to length and sum exactly."""
    shares = apportion_tokens(10, ["a" * 30, "b" * 10, "c" * 10])

    assert sum(shares) == 10
    assert shares[0] >= shares[1]
    assert shares == [6, 2, 2]


def test_apportion_tokens_remainder_goes_to_longest():
    """Test rounding leftovers are assigned to the longest texts first."""
    shares = apportion_tokens(10, ["a" * 20, "b" * 10])

    assert shares == [7, 3]


def test_apportion_tokens_empty_inputs():
    """Test edge cases with no texts or empty texts."""
    assert apportion_tokens(5, []) == []
    assert sum(apportion_tokens(5, ["", ""])) == 5
