"""Business services - one module per component."""
