"""
Policy store package.
"""
