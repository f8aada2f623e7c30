"""Chart repository sources: credentials, git and HTTP fetch, staleness policy."""
