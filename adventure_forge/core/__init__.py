"""
Core modules for Adventure Forge.

This package contains generation orchestration, prompt assembly, the
response cache, the credit ledger and regeneration limits.
"""
