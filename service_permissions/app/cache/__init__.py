"""
Cache package for Permissions Service.

Provides an in-process TTL cache of decisions. Entries are invalidated by
principal, by resource or entirely whenever an administrative change can
affect them.
"""
