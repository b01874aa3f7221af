"""
Six Degrees Cast Graph

This package contains the core logic for finding the shortest chain of
shared movies between two actors using a cached, phased bidirectional BFS.
"""

__version__ = "1.0.0"
