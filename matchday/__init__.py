"""
Matchday: football match scheduling and roster signups for a community group.
"""
