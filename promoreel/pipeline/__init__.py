"""Pipeline stages: script, storyboard, keyframes, clips, continuity, versions and export."""
