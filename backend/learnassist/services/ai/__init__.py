"""
Model-facing services: tier routing, personas, prompt composition and
the LLM client.

Nothing here reads or writes session state; the session manager owns that.
"""
