"""OData query translation."""

from .compiler import ODataCompiler, FilterParser, tokenize, escape_like
from .translator import ODataTranslator, parse_query_options, apply_read_hint, READ_HINT

__all__ = [
    "ODataCompiler",
    "FilterParser",
    "tokenize",
    "escape_like",
    "ODataTranslator",
    "parse_query_options",
    "apply_read_hint",
    "READ_HINT",
]
