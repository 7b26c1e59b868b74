"""Core pricing, risk and analytics components."""
