"""Services for deriving content dates from git history."""
