"""In-memory device tree model with source and YAML writers and helpers."""

__version__ = "1.5.0"

__all__ = ["livetree", "srcpos", "treesource", "util", "yamltree"]