"""Router package exports."""
