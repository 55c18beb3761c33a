"""Auction state machine, accounts, events and storage"""
