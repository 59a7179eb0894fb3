"""
Test support utilities for relay-core tests.

Test doubles (fake clock, in-memory order repository, scripted HTTP
destination) live in :mod:`tests._support.fakes`.
"""
