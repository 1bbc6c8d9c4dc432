"""Chain adapters: one implementation per supported blockchain family."""
