"""FastAPI HTTP boundary for the voucher kernel."""
