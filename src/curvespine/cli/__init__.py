"""curve-spine command line interface (``curvespine``)."""
