"""Background processes that run alongside the API."""
