"""Trip journal API: photos, journal entries and emoji reactions."""
