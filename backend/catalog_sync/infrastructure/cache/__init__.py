"""
Cache rapido (Redis) para mapeos de campos y estado de sync.
"""
