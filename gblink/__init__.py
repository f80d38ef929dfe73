"""Relocating linker for gbz80 object files, with S19 output and link maps."""

__version__ = "3.0.0"
__all__ = ["cgb", "linker", "options", "relocation", "s19", "symbols"]