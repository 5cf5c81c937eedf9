"""DermTrack: skin lesion analysis and patient history."""
