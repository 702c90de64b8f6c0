"""Order-sheet conversion: messy CSV/Excel order files in, template-shaped purchase orders out."""

__version__ = "0.1.0"
