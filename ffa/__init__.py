"""FFA league engine: live standings, knockout brackets and manager ratings."""
