"""Source registry, selection, authentication, health and fetching."""
