"""FreshLocal marketplace backend: orders, payments and vendor payouts"""

__version__ = "0.1.0"
