"""Budget Tracker AI Agent.

This package contains the tool-calling agent behind the budget tracker's
two AI features: answering natural language questions about a user's
transactions, and generating proactive spending recommendations from
the same data.
"""
