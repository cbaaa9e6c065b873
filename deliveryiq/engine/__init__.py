"""
Delivery IQ Algorithm Engine — pure functions, no I/O.

Components:
- segments: service / zone / season / region buckets, segment keys, roll-up tiers
- outcomes: tracking snapshot → labeled or censored outcome features
- kaplan_meier: survival curve estimation, percentiles, interpolation, confidence
- curves: per-segment curve fitting with outcome counts
- probability: eventual-delivery estimate with a pluggable decay policy
"""
