"""
Idol SNS Dashboard

Serves monthly follower/view counts for idols, scraped into a spreadsheet:
1. Reads the spreadsheet as the single source of truth
2. Fronts it with a time-bucketed server cache (Redis)
3. Pre-warms that cache in small scheduled partitions
4. Exposes a read endpoint with top-N and per-month limiting
5. Loads the dashboard progressively through a client-side persistent cache
"""

__version__ = "0.4.0"
