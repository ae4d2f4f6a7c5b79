"""CineTaste: movie and TV watchlists on top of the TMDB catalog."""
