"""Stage sequencing, resume logic and single-shot operations."""
