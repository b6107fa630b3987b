"""coord-spine command-line interface."""
