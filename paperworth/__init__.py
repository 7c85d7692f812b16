# paperworth/__init__.py
# client library for the PaperWorth receipts / budget / rewards API

__version__ = "0.1.0"
