"""prwatch: open pull request dashboard engine for a fixed list of GitHub repositories."""

__version__ = "0.1.0"
