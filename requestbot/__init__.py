"""Discord request tracking bot."""
