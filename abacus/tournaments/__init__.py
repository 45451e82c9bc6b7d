"""Tournament entities and setup."""
