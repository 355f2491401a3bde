"""
Audit package: append-only permission audit log and security reports.
"""
