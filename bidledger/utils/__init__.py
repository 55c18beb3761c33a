"""Helpers shared across the bid ledger"""
