"""
Git Exporter - writes transformed source trees into a destination git repository.

This package takes a directory produced by an upstream transformation plus its
metadata (author, date, summary, origin revision) and turns it into a commit
pushed to a destination repository. Every commit carries a label pointing back
to the origin revision, so a later run can find where the previous one stopped.
"""

__version__ = "1.0.0"
