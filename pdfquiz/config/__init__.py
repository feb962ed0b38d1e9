"""Configuration module -- exports Settings and load_config."""

from pdfquiz.config.loader import load_config
from pdfquiz.config.settings import Settings

__all__ = ["Settings", "load_config"]
