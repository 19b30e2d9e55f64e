"""Models package for the content strategist backend."""
