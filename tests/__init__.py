"""
CriticMerge Tests Package
=========================
Test suite for the diff, annotation, merge and comment-anchor modules.

Run all tests: python3 -m pytest tests/ -v
Run specific: python3 -m pytest tests/test_merge.py -v
"""

__version__ = "1.0.0"
