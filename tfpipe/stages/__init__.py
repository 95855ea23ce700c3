"""Pipeline stages: plan (with analysis) and apply (with backup)."""
