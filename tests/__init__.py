"""
mapsharvest test suite.

Structure:
- fakes.py: in-memory session, launcher, clock, extractor, lookup provider and sinks
- unit/: fast, isolated tests; no browser or network needed
"""
