"""Collateralized lending and credit-risk engine for tokenized coffee groves."""
