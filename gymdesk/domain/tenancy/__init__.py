"""
Tenant scoping: which franchises a caller may read or write, the current
account context, and the account's currency.
"""
