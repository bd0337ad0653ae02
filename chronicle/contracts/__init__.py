"""
Contracts Module

Record types shared by every layer: state events, narrative events,
projections, snapshots, enumerations and error types. All inter-layer
communication uses these contracts.

DESIGN PRINCIPLES:
==================
1. All contract types are immutable (frozen dataclasses)
2. Expected failures are data (Error / Result), not exceptions
3. Character pairs are always stored sorted; keys are lowercase
"""
