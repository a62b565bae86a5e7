"""Community-health dataset collector for public GitHub repositories."""
