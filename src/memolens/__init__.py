"""memolens: asynchronous media-analysis pipeline."""
