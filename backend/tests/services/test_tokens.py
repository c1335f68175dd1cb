"""
Tests for TokenCounter.

Exact counts depend on the tiktoken encoding files being available, so
exact-path assertions are relative; the fallback path is checked exactly
by patching the encoder lookup.
"""

from unittest.mock import MagicMock, patch

from contentpipe.services.processors import tokens
from contentpipe.services.processors.tokens import TokenCounter, estimate_tokens


class TestEstimateTokens:

    def test_rounds_up(self):
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("a" * 401) == 101

    def test_empty(self):
        assert estimate_tokens("") == 0


class TestTokenCounter:

    def test_empty_text_is_zero(self):
        counter = TokenCounter()
        assert counter.count("") == 0

    def test_longer_text_has_more_tokens(self):
        counter = TokenCounter()
        short = counter.count("Hello world")
        longer = counter.count("This is a much longer piece of text that should have more tokens.")
        assert 0 < short < longer

    def test_falls_back_when_encoder_unavailable(self):
        counter = TokenCounter()
        with patch.object(tokens, "_encoding_for", return_value=None):
            assert counter.count("a" * 10) == 3

    def test_falls_back_when_encoding_raises(self):
        encoding = MagicMock()
        encoding.encode.side_effect = ValueError("boom")
        counter = TokenCounter()
        with patch.object(tokens, "_encoding_for", return_value=encoding):
            assert counter.count("a" * 8) == 2

    def test_unknown_model_never_raises(self):
        counter = TokenCounter()
        text = "Some text for a model tiktoken does not know."
        assert counter.count(text, model="definitely-not-a-model") > 0

    def test_special_token_text_is_counted(self):
        counter = TokenCounter()
        assert counter.count("<|endoftext|> in user content") > 0

    def test_uses_instance_model_by_default(self):
        counter = TokenCounter(model="custom-model")
        with patch.object(tokens, "_encoding_for", return_value=None) as lookup:
            counter.count("abc")
        lookup.assert_called_once_with("custom-model")
