"""distcarto command-line tools."""
