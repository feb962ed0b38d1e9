"""pdfquiz -- turn uploaded PDFs into multiple-choice study questions."""

__version__ = "0.1.0"
