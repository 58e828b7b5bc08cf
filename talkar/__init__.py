"""TalkAR generation worker: script, speech and lip-synced video for AR posters."""
