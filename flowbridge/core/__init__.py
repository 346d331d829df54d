"""Core bridge logic, independent of chat transport."""
