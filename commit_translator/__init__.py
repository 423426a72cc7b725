"""Plain-English translation of GitHub commit history."""
