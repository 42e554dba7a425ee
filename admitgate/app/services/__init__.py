"""Services package for the admission gateway.

This package provides:
- threat_detector: Pattern-based classification of request fragments
- address_policy: Allow/deny evaluation of caller network addresses
- quota_ledger: Sliding-window-log quota accounting (in-memory and Redis)
- tier_resolver: Caller to quota tier mapping and limiting key derivation
- pipeline: The admission pipeline combining the above
- events: Decision event sinks
"""
