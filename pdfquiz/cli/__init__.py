"""Command-line tools for pdfquiz.

- ``python -m pdfquiz.cli process FILE.pdf`` -- run the full pipeline on a
  local PDF and print the generated questions.
- ``python -m pdfquiz.cli token OWNER_ID`` -- issue a bearer token for the
  HTTP API.
"""
