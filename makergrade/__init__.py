"""
makergrade: crawl MakerWorld listings, scrape item pages, and grade how
well each item is presented using a vision model.
"""

__version__ = "0.1.0"
