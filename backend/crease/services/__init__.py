"""Services the core calls out to; currently only completed-match statistics."""
