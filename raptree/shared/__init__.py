# Shared helpers for raptree

from .files import (
    setup_logging,
    write_json,
    read_json,
)
from .tokens import (
    Tokenizer,
    count_tokens,
    get_default_tokenizer,
)
