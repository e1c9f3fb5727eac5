"""PromQL lexer, expression tree, function table and logical plan optimizers."""

__version__ = "0.1.0"