from typing import Optional

import tiktoken

from raptree.config import TOKENIZER_MODEL


class Tokenizer:
    """Token counting capability used wherever token budgets are checked.

    The tiktoken encoding is resolved on first use, so building a config
    object never touches the encoding registry.

    Args:
        model: Model name passed to tiktoken.encoding_for_model.
        encoding_name: Explicit encoding (e.g. "cl100k_base"); wins over model.
    """

    def __init__(self, model: str = TOKENIZER_MODEL, encoding_name: Optional[str] = None):
        self.model = model
        self.encoding_name = encoding_name
        self._encoding = None

    @property
    def encoding(self) -> tiktoken.Encoding:
        if self._encoding is None:
            if self.encoding_name:
                self._encoding = tiktoken.get_encoding(self.encoding_name)
            else:
                self._encoding = tiktoken.encoding_for_model(self.model)
        return self._encoding

    def encode(self, text: str) -> list[int]:
        return self.encoding.encode(text)

    def count_tokens(self, text: str) -> int:
        if not text:
            return 0
        return len(self.encode(text))

    def __repr__(self) -> str:
        return f"Tokenizer(model={self.model!r}, encoding_name={self.encoding_name!r})"


_default_tokenizer: Optional[Tokenizer] = None


def get_default_tokenizer() -> Tokenizer:
    global _default_tokenizer
    if _default_tokenizer is None:
        _default_tokenizer = Tokenizer()
    return _default_tokenizer


def count_tokens(text: str) -> int:
    return get_default_tokenizer().count_tokens(text)
