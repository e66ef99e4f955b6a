"""Chat transcript, session and panel."""
