"""
Franchise analytics: windowed fetches of payments, expenses and members,
reduced into grouped summaries, an overview and KPIs.
"""
