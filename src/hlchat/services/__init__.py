"""Gateway services: authentication, replay protection and fan-out."""
