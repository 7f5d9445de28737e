"""Tests for token counting."""

import pytest

from context_pools.token_counter import create_token_counter, estimate_tokens


class TestTokenCounter:
    def test_estimate(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_factory_default(self):
        assert create_token_counter() is estimate_tokens

    def test_callable_mode(self):
        counter = create_token_counter("callable:context_pools.token_counter:estimate_tokens")
        assert counter("abcdefgh") == 2

    def test_bad_callable_spec(self):
        with pytest.raises(ValueError):
            create_token_counter("callable:no_function_part")

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            create_token_counter("words")

