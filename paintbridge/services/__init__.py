"""Gateway services: broadcast fan-out, command handling and the event loop."""
