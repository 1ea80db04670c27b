"""Heights trading platform backend."""
