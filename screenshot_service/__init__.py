"""Screenshot service: shared headless browser, cached artifact URLs."""
