"""
Lending Core

A small lending back-office: loans repaid through scheduled installments,
integer minor-unit money, hash-chained audit trails, and debit cards.
"""

__version__ = "1.0.0"
