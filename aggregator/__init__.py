"""Holdings aggregation."""
