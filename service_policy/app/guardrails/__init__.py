"""
Platform and company-type guardrails.
"""
