from raptree.shared.tokens import Tokenizer, count_tokens, get_default_tokenizer


class TestTokenizer:
    def test_encoding_resolved_lazily(self):
        tokenizer = Tokenizer(encoding_name="cl100k_base")

        assert tokenizer._encoding is None
        assert tokenizer.count_tokens("") == 0
        assert tokenizer._encoding is None

    def test_repr(self):
        assert repr(Tokenizer(model="gpt-4")) == "Tokenizer(model='gpt-4', encoding_name=None)"

    def test_default_is_shared(self):
        assert get_default_tokenizer() is get_default_tokenizer()

    def test_module_count_tokens_on_empty_text(self):
        assert count_tokens("") == 0
