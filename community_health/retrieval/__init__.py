"""HTTP access, scraping, probing, and attribute collection against GitHub."""
