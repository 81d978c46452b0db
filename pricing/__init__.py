"""Price discovery: pool math and the tiered oracle."""
